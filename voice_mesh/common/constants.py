"""Shared constants for audio and signaling settings."""

# Audio parameters
SAMPLE_RATE = 48000  # Hz (Opus native)
CHANNELS = 1  # Mono for voice
FRAME_SIZE = 960  # 20ms at 48kHz

# Playback volume, 0-100
DEFAULT_VOLUME = 75
MAX_VOLUME = 100

# STUN servers for peer links (no TURN, no media relay)
ICE_SERVERS = (
    "stun:stun.l.google.com:19302",
    "stun:global.stun.twilio.com:3478",
)

# Keepalive
PING_INTERVAL = 10.0  # Send ping every 10 seconds
PING_TIMEOUT = 30.0  # Disconnect if no pong within 30 seconds
SEND_TIMEOUT = 5.0  # Disconnect if a write to a participant stalls this long

# Network
DEFAULT_HOST = "127.0.0.1"
DEFAULT_BIND_HOST = "0.0.0.0"
DEFAULT_PORT = 3001
MAX_MESSAGE_SIZE = 1024 * 1024  # Largest accepted frame (SDP is a few KB)
