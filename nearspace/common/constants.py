"""Shared constants for world, audio and network settings."""

# World
POSITION_LIMIT = 200.0  # Each axis clamped to [-limit, limit]

# Movement
MOVE_SPEED = 64.0  # World units per second toward the pointer
SNAP_DISTANCE = 1.0  # Within this, snap to goal instead of moving
REMOTE_SMOOTHING = 5.0  # Fraction of remaining distance per second (times dt)
POSITION_SEND_INTERVAL = 0.025  # Seconds between outbound position reports

# Audio parameters
SAMPLE_RATE = 48000  # Hz (Opus native)
FRAME_SIZE = 960  # 20ms at 48kHz

# Proximity audio settings
AUDIO_MAX_DISTANCE = 128.0  # Beyond this, volume = 0
AUDIO_FULL_VOLUME_DISTANCE = 16.0  # Within this, volume = 1.0

# Calls
CALL_TIMEOUT = 15.0  # Seconds to wait for an answer / remote track

# Client
FRAME_INTERVAL = 0.016  # ~60fps
POINTER_STEP = 8.0  # World units per pointer key press
RECONNECT_DELAY = 2.0  # Seconds between reconnect attempts

# Network
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 7878
