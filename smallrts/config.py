"""Shared constants for SmallRTS. All game-wide configuration lives here."""

# --- Display ---
SCREEN_WIDTH = 1280
SCREEN_HEIGHT = 720
FPS = 60
FRAME_DURATION_S = 1.0 / FPS
GRID_SPACING = 50  # pixels between background grid lines

# --- Simulation ---
SNAPSHOT_INTERVAL = 4  # host broadcasts a snapshot every N advances (~15 Hz at 60 FPS)
REJECT_STALE_SNAPSHOTS = True  # followers drop snapshots older than the last applied

# --- Unit ---
UNIT_HP = 100
UNIT_SPEED = 2  # pixels per tick
UNIT_RADIUS = 12
SELECTION_RING_RADIUS = 18

# --- Starting roster ---
STARTING_UNITS = 3
SPAWN_ORIGIN_X = 100
SPAWN_ORIGIN_Y = 100
SPAWN_PLAYER_STEP_X = 100  # offset per player already in the game
SPAWN_PLAYER_STEP_Y = 80
SPAWN_UNIT_SPACING = 30    # horizontal gap between units of one roster

# --- Input ---
SELECTION_THRESHOLD = 20  # pixels, click selection radius

# --- Players ---
PLAYER_COLORS = [
    (231, 76, 60),
    (52, 152, 219),
    (46, 204, 113),
    (243, 156, 18),
    (155, 89, 182),
    (26, 188, 156),
    (230, 126, 34),
    (149, 165, 166),
]

# --- Relay ---
DEFAULT_RELAY_PORT = 8443
SIGNAL_PATH = "/signal"
ROOM_ID_LENGTH = 4
PEER_ID_LENGTH = 6
ID_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# --- Networking ---
ICE_SERVERS = ["stun:stun.l.google.com:19302"]
RELIABLE_LABEL = "reliable"
FAST_LABEL = "fast"

# --- Colors (placeholder rendering) ---
COLOR_BG = (10, 10, 20)
COLOR_GRID = (26, 26, 46)
COLOR_SELECTION = (255, 255, 255)
COLOR_HP_BACK = (0, 0, 0)
COLOR_HP_FRONT = (0, 255, 0)
COLOR_UNKNOWN_PLAYER = (255, 255, 255)
COLOR_DEBUG_TEXT = (200, 200, 200)
