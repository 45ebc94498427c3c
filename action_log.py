# action_log.py
import inspect
import os
import sys
import threading
from collections import deque
from datetime import datetime

# Log Level Mapping
LOG_LEVELS = {
    "CRITICAL": 50,
    "ERROR": 40,
    "WARNING": 30,
    "INFO": 20,
    "DEBUG": 10,
    "DISABLED": 0,
}

# Critical messages (must always be logged)
CRITICAL_FLAGS = {"CRITICAL", "ERROR"}


class ActionLog:
    """Pipe-separated action log with size based rotation.

    Instances are called as ``log(flag, msg)``, the same signature every
    component accepts as its ``log_callback``. Each entry records the calling
    function so the log reads like a trace of the daemon's handlers.
    """

    def __init__(self, log_file, level="INFO", max_size=1000000, client_log_file=None):
        self.log_file = log_file
        self.client_log_file = client_log_file or log_file
        self.level = level.upper()
        self.max_size = max_size
        self.log_lock = threading.Lock()

    @classmethod
    def from_config(cls, config):
        return cls(
            config.LOG_FILE,
            level=config.get("daemon", "LOG_LEVEL", "INFO"),
            max_size=config.getint("daemon", "MAX_LOG_SIZE", 1000000),
            client_log_file=config.CLIENT_LOG_FILE,
        )

    def __call__(self, flag, msg):
        """Log an action based on log level settings."""
        log_level = LOG_LEVELS.get(self.level, 20)  # Default to INFO
        message_priority = LOG_LEVELS.get(flag, 20)

        # Skip logging if below the configured level (except for critical messages)
        if message_priority < log_level and flag not in CRITICAL_FLAGS:
            return

        # Get calling method dynamically
        method = inspect.currentframe().f_back.f_code.co_name
        timestamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        pid = os.getpid()

        log_entry = f"{timestamp}|{pid}|{method}|{flag}|{msg}\n"

        # Client errors get their own file
        log_path = self.client_log_file if method == "handle_client" and flag == "ERROR" else self.log_file

        with self.log_lock:
            self.rotate_log_if_needed(log_path)
            try:
                with open(log_path, "a", encoding="utf-8") as log:
                    log.write(log_entry)
            except IOError as e:
                print(f"Failed to write to log: {str(e)}", file=sys.stderr)

    def rotate_log_if_needed(self, logfile):
        """Rotate log file if it exceeds configured maximum size"""
        try:
            if os.path.exists(logfile) and os.path.getsize(logfile) >= self.max_size:
                rotated_log = f"{logfile}.1"

                # Remove old rotated log if exists
                if os.path.exists(rotated_log):
                    os.remove(rotated_log)

                os.rename(logfile, rotated_log)

                with open(logfile, "w", encoding="utf-8") as new_log:
                    new_log.write(f"{datetime.now().isoformat()}|SYSTEM|LOG|Rotated log file\n")
        except OSError as e:
            print(f"Log rotation failed: {str(e)}", file=sys.stderr)

    def tail(self, numlines):
        """Return the last ``numlines`` lines of the log"""
        if not os.path.exists(self.log_file):
            return ""
        with open(self.log_file, "r", encoding="utf-8") as file:
            last_n_lines = deque(file, maxlen=int(numlines))
        return "".join(last_n_lines).rstrip("\n")
