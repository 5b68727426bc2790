BIN_NAME = "vtlogin"

# fallback for login shell and SHELL
DEFAULT_SHELL = "/bin/sh"

CONFIG_PATH = "/etc/vtlogin/conf"
LOG_DIR = "/var/log/vtlogin"

# X server lock files and sockets
X_LOCK_DIR = "/tmp"
X_SOCKET_DIR = "/tmp/.X11-unix"
XORG_BIN = "/usr/bin/Xorg"

# seconds
CARRIER_TIMEOUT = 10
CARRIER_POLL_STEP = 0.1
WATCHER_JOIN_TIMEOUT = 5
