# config_manager.py
import os
import sys
import configparser

# Environment variables that take precedence over [api] values
ENV_OVERRIDES = {
    "CLIENT_ID": ("api", "CLIENT_ID"),
    "CLIENT_SECRET": ("api", "CLIENT_SECRET"),
    "AUTH_URL": ("api", "AUTH_URL"),
    "BASE_URL": ("api", "BASE_URL"),
}


def get_config_dir():
    if sys.platform.startswith("win"):
        # On Windows, use the APPDATA folder.
        base_dir = os.environ.get("APPDATA", os.path.join(os.path.expanduser("~"), "AppData", "Roaming"))
        return os.path.join(base_dir, "ayah-player")
    if sys.platform == "darwin":
        return os.path.expanduser("~/Library/Application Support/ayah-player")
    return os.path.expanduser("~/.config/ayah-player")


class ConfigManager:
    def __init__(self, user_config_dir=None, environ=None):
        self.environ = os.environ if environ is None else environ
        self.invalid_values = []
        self._init_paths(user_config_dir or get_config_dir())
        self.config = self._load_config()

    def _init_paths(self, user_config_dir):
        """Initialize all important paths"""
        self.USER_CONFIG_DIR = user_config_dir
        self.USER_CONFIG_FILE = os.path.join(self.USER_CONFIG_DIR, "config.ini")

        # Daemon control files
        self.CONTROL_DIR = os.path.join(self.USER_CONFIG_DIR, "control")
        self.LOG_FILE = os.path.join(self.CONTROL_DIR, "daemon.log")
        self.CLIENT_LOG_FILE = os.path.join(self.CONTROL_DIR, "daemon-client.log")
        self.SOCKET_FILE = os.path.join(self.CONTROL_DIR, "daemon.sock")
        self.PID_FILE = os.path.join(self.CONTROL_DIR, "daemon.pid")
        self.LOCK_FILE = os.path.join(self.CONTROL_DIR, "daemon.lock")

    def ensure_directories(self):
        """Create required directories if they don't exist"""
        for directory in [self.USER_CONFIG_DIR, self.CONTROL_DIR]:
            os.makedirs(directory, exist_ok=True)

    def _get_default_config(self):
        """Return default configuration values"""
        return {
            "daemon": {
                "MAX_LOG_SIZE": "1000000",
                "LOG_LEVEL": "INFO",
            },
            "api": {
                "CLIENT_ID": "",
                "CLIENT_SECRET": "",
                "AUTH_URL": "https://oauth2.quran.foundation",
                "BASE_URL": "https://apis.quran.foundation",
                "LANGUAGE": "en",
                "TIMEOUT": "10",
            },
            "audio": {
                "AUDIO_BASE_URL": "https://verses.quran.foundation/",
                "VOLUME": "1.0",
                "AUTO_REPLAY": "no",
            },
        }

    def _validate(self, key, value):
        """Raise ValueError for values a key cannot take"""
        if key == "MAX_LOG_SIZE":
            if int(value) < 1024:
                raise ValueError("Must be at least 1024 bytes")
        elif key == "LOG_LEVEL":
            if value.upper() not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "DISABLED"}:
                raise ValueError("Unknown log level")
        elif key == "TIMEOUT":
            if float(value) <= 0:
                raise ValueError("Must be positive")
        elif key == "VOLUME":
            if not (0.0 <= float(value) <= 1.0):
                raise ValueError("Must be between 0 and 1")
        elif key == "AUTO_REPLAY":
            if value.lower() not in {"yes", "no", "true", "false", "1", "0", "on", "off"}:
                raise ValueError("Invalid boolean value")
        elif key in {"AUTH_URL", "BASE_URL", "AUDIO_BASE_URL"}:
            if not value.startswith(("http://", "https://")):
                raise ValueError("Must be an http(s) URL")

    def _load_config(self):
        """Load configuration from defaults, user config and environment"""
        defaults = self._get_default_config()
        config = configparser.ConfigParser()
        config.read_dict(defaults)

        if os.path.exists(self.USER_CONFIG_FILE):
            config.read(self.USER_CONFIG_FILE, encoding="utf-8")

        for env_name, (section, key) in ENV_OVERRIDES.items():
            if self.environ.get(env_name):
                config.set(section, key, self.environ[env_name])

        # Fall back to defaults for anything that does not validate
        for section, values in defaults.items():
            for key, default_value in values.items():
                value = config.get(section, key, fallback=default_value)
                try:
                    self._validate(key, value)
                except ValueError as e:
                    self.invalid_values.append(
                        f"Invalid value for {section}.{key}: {value} ({str(e)}). Using default: {default_value}.")
                    config.set(section, key, default_value)

        return config

    def get(self, section, key, default=None):
        """Get a configuration value with fallback to default"""
        try:
            return self.config.get(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError):
            return default

    def getboolean(self, section, key, default=False):
        """Get a boolean configuration value"""
        try:
            return self.config.getboolean(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def getint(self, section, key, default=0):
        """Get an integer configuration value"""
        try:
            return self.config.getint(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def getfloat(self, section, key, default=0.0):
        """Get a float configuration value"""
        try:
            return self.config.getfloat(section, key)
        except (configparser.NoSectionError, configparser.NoOptionError, ValueError):
            return default

    def generate_default_config(self):
        """Write default configuration to user config file"""
        defaults = configparser.ConfigParser()
        defaults.read_dict(self._get_default_config())
        os.makedirs(self.USER_CONFIG_DIR, exist_ok=True)
        with open(self.USER_CONFIG_FILE, "w", encoding="utf-8") as configfile:
            defaults.write(configfile)
        return True

    def set(self, section, key, value):
        """Set a configuration value and save to file"""
        if not self.config.has_section(section):
            self.config.add_section(section)
        self.config.set(section, key, str(value))
        self.save_config()

    def save_config(self):
        """Save configuration to user config file"""
        os.makedirs(self.USER_CONFIG_DIR, exist_ok=True)
        with open(self.USER_CONFIG_FILE, "w", encoding="utf-8") as configfile:
            self.config.write(configfile)
