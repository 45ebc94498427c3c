"""
Ayah Player Daemon - v1.0.0

A background service for continuous, verse-by-verse Quran recitation
streamed from the Quran Foundation content API.

Features:
- Gapless playback of a chapter, juz, hizb or rub, across chapter boundaries
- Auto-advance and optional auto-replay of the whole range
- Any published reciter, audio addressed per verse
- Access token handled transparently (cached, refreshed on rejection)
- Configurable through ~/.config/ayah-player/config.ini

Usage:
  ayah-daemon [command] [arguments]

Commands:
  start     Start the daemon
  stop      Stop the daemon
  reciters  List available reciters
  reciter   Select a reciter (e.g. reciter 7)
  load      Load a range (e.g. load juz 30, load 18)
  play      Resume playback
  pause     Pause playback
  toggle    Play/pause toggle
  next      Next verse
  prev      Previous verse
  seek      Seek within the verse (seconds)
  volume    Set volume (0-1)
  mute      Mute/unmute
  repeat    Toggle auto replay of the range
  retry     Reload the current verse after an error
  status    Show current playback status
  log       Show the last lines of the daemon log
  config    Generate default config
  cleanup   Remove orphaned files
  help      Show this help

License: GPLv3
"""
import io
import json
import os
import signal
import socket
import sys
import threading
from contextlib import redirect_stdout

import portalocker
import psutil

from action_log import ActionLog
from audio_player import AudioPlayer
from config_manager import ConfigManager
from content_client import ContentClient
from errors import AyahPlayerError
from listening_session import ListeningSession
from playback_controller import PlaybackController
from quran_data import ChapterLengthTable, validate_selection

class Daemon:
    def __init__(self, config, log_action=None, content=None, transport=None):
        self.config = config
        self.running = False
        self.error_msg = ""
        self.server_socket = None
        self.state_lock = threading.Lock()
        config.ensure_directories()
        self.log_action = log_action or ActionLog.from_config(config)

        self.valid_commands = ["play", "pause", "toggle", "stop", "load", "reciter", "reciters",
                               "next", "prev", "seek", "volume", "mute", "repeat", "retry",
                               "start", "status", "config", "log"]

        for message in config.invalid_values:
            self.log_action("INFO", message)

        self.content = content or ContentClient.from_config(config, log_callback=self.log_action)
        self.session = ListeningSession(self.content, config.get("audio", "AUDIO_BASE_URL"), self.log_action,
                                        fallback_lengths=ChapterLengthTable.builtin())

        volume = config.getfloat("audio", "VOLUME", 1.0)
        self.transport = transport or AudioPlayer(self.log_action, volume=volume)

        self.controller = PlaybackController(
            self.transport,
            ChapterLengthTable.builtin(),
            log_callback=self.log_action,
            on_change=self.on_playback_change,
            auto_replay=config.getboolean("audio", "AUTO_REPLAY", False),
            volume=volume,
        )
        self.selection = None  # (mode, number)
        self.verse_texts = {}
        self.current_text = ""

    def on_playback_change(self, controller):
        """Track the text of the verse being played"""
        position = controller.position
        self.current_text = self.verse_texts.get(position.verse_key, "") if position else ""

    def pump_events(self):
        """Feed transport events into the controller"""
        self.transport.poll()
        for event in self.transport.drain_events():
            with self.state_lock:
                self.controller.dispatch(event)

    def _fail(self, msg):
        self.log_action("ERROR", msg)
        self.error_msg = msg
        return False

    def _controller_result(self, ok):
        if not ok:
            error = self.controller.last_error
            self.error_msg = str(error) if error else f"Not available while {self.controller.state}"
        return ok

    # Command handlers

    def handle_reciter(self, args):
        """Select a reciter; the loaded range is discarded"""
        try:
            reciter_id = int(args)
        except ValueError:
            return self._fail(f"Invalid reciter id: {args}")
        with self.state_lock:
            self.session.select_reciter(reciter_id)
            self.controller.unload()
            self.selection = None
            self.verse_texts = {}
        return True

    def handle_reciters(self):
        try:
            reciters = self.content.get_reciters(self.config.get("api", "LANGUAGE", "en"))
        except AyahPlayerError as e:
            self._fail(f"Reciter listing failed: {str(e)}")
            return f"ERROR: {self.error_msg}"
        lines = []
        for reciter in reciters:
            style = reciter.get("style") or ""
            lines.append(f"{reciter.get('id')}|{reciter.get('reciter_name')}|{style}")
        return "\n".join(lines)

    def handle_load(self, args):
        """Load a chapter, juz, hizb or rub and start playing it"""
        parts = args.split()
        try:
            if len(parts) == 1:
                mode, number = "chapter", int(parts[0])
            elif len(parts) == 2:
                mode, number = parts[0].lower(), int(parts[1])
            else:
                raise ValueError("Usage: load [chapter|juz|hizb|rub] <number>")
            validate_selection(mode, number)
        except ValueError as e:
            return self._fail(f"Invalid load format: {str(e)}")

        if self.session.reciter_id is None:
            return self._fail("Select a reciter first")

        try:
            lengths = self.session.chapter_table()
            listening_range, template = self.session.build_range(mode, number)
        except (AyahPlayerError, ValueError) as e:
            return self._fail(f"Load failed: {str(e)}")

        try:
            verse_texts = self.session.verse_texts(mode, number)
        except AyahPlayerError as e:
            self.log_action("WARNING", f"Verse text unavailable: {str(e)}")
            verse_texts = {}

        with self.state_lock:
            self.selection = (mode, number)
            self.verse_texts = verse_texts
            self.controller.lengths = lengths
            return self._controller_result(self.controller.load_range(listening_range, template, autoplay=True))

    def handle_play(self):
        with self.state_lock:
            return self._controller_result(self.controller.play())

    def handle_pause(self):
        with self.state_lock:
            return self._controller_result(self.controller.pause())

    def handle_toggle(self):
        with self.state_lock:
            return self._controller_result(self.controller.toggle())

    def handle_next(self):
        with self.state_lock:
            return self._controller_result(self.controller.next())

    def handle_prev(self):
        with self.state_lock:
            return self._controller_result(self.controller.previous())

    def handle_retry(self):
        with self.state_lock:
            return self._controller_result(self.controller.retry())

    def handle_seek(self, args):
        try:
            seconds = float(args)
        except ValueError:
            return self._fail(f"Invalid position: {args}")
        with self.state_lock:
            return self._controller_result(self.controller.seek(seconds))

    def handle_volume(self, args):
        try:
            volume = float(args)
        except ValueError:
            return self._fail(f"Invalid volume: {args}")
        if not (0.0 <= volume <= 1.0):
            return self._fail("Volume must be between 0 and 1")
        with self.state_lock:
            return self.controller.set_volume(volume)

    def handle_mute(self):
        with self.state_lock:
            self.controller.toggle_mute()
        return True

    def handle_repeat(self):
        with self.state_lock:
            self.controller.toggle_auto_replay()
        return True

    def handle_status(self):
        """Return playback status as JSON"""
        with self.state_lock:
            status = self.controller.status()
        mode, number = self.selection or (None, None)
        status.update({
            "reciter": self.session.reciter_id,
            "mode": mode,
            "number": number,
            "text": self.current_text,
            "daemon_running": True,
        })
        return json.dumps(status, ensure_ascii=False)

    def handle_log(self, args):
        try:
            return self.log_action.tail(int(args))
        except (ValueError, OSError) as e:
            self.log_action("ERROR", f"Log retrieval failed: {str(e)}")
            return f"ERROR: {str(e)}"

    def handle_config(self):
        """Write the default configuration to the user's config file."""
        self.config.generate_default_config()
        self.log_action("INFO", f"Default config generated at {self.config.USER_CONFIG_FILE}")
        return True

    def handle_stop(self):
        """Stop playback and signal the main loop to exit"""
        with self.state_lock:
            self.controller.unload()
        self.running = False
        # Close server socket to unblock accept() call
        if self.server_socket:
            try:
                self.server_socket.close()
            except OSError:
                pass
        self.log_action("INFO", "Shutdown initiated")
        return True

    def execute(self, data):
        """Run one command line and return the reply text"""
        parts = data.split(maxsplit=1)
        if not parts:
            return "ERROR: Empty command"
        command = parts[0]
        args = parts[1] if len(parts) > 1 else ''

        if command in ("about", "help"):
            buf = io.StringIO()
            with redirect_stdout(buf):
                about()
            return buf.getvalue()
        if command == "status":
            return self.handle_status()
        if command == "reciters":
            return self.handle_reciters()
        if command == "log":
            if not args:
                return "ERROR: Missing numlines"
            return self.handle_log(args)
        if command == "stop":
            self.handle_stop()
            return "OK: Daemon shutting down"

        if command in ("load", "reciter", "seek", "volume"):
            if not args:
                return f"ERROR: Missing argument for {command}"
            success = getattr(self, f"handle_{command}")(args)
        elif command in self.valid_commands and command != "start":
            success = getattr(self, f"handle_{command}")()
        else:
            return "ERROR: Unknown command"

        return "OK" if success else f"ERROR: Command failed: {self.error_msg}"

    def handle_client(self, conn):
        try:
            conn.settimeout(5.0)
            data = conn.recv(1024).decode().strip()
            response = self.execute(data)
            try:
                conn.sendall(response.encode() + b"\n")
            except (BrokenPipeError, ConnectionResetError):
                self.log_action("WARNING", "Client disconnected before receiving response")
        except Exception as e:
            self.log_action("ERROR", f"Client error: {str(e)}")
        finally:
            self.error_msg = ""
            try:
                conn.close()
            except OSError:
                pass

    def handle_start(self):
        """Safe daemon startup with file lock to prevent races"""
        self.config.ensure_directories()
        cleanup_orphaned_files(self.config)

        # Use a lock file to prevent multiple instances
        with open(self.config.LOCK_FILE, 'w') as f:
            try:
                portalocker.lock(f, portalocker.LOCK_EX | portalocker.LOCK_NB)
            except portalocker.LockException:
                self.log_action("ERROR", "Daemon already running (locked)")
                sys.exit(1)

            if is_daemon_running(self.config):
                self.log_action("ERROR", "Daemon already running!")
                sys.exit(1)

            with open(self.config.PID_FILE, "w") as pid_file:
                pid_file.write(str(os.getpid()))

        if os.path.exists(self.config.SOCKET_FILE):
            os.remove(self.config.SOCKET_FILE)

        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(self.config.SOCKET_FILE)
        server.listen(5)
        server.settimeout(0.05)  # short accept timeout doubles as the event poll interval
        self.server_socket = server

        self.log_action("INFO", "Daemon started. Listening for commands.")
        self.running = True
        print("OK")

        def shutdown_handler(signum, frame):
            self.log_action("INFO", f"Received signal {signum}, shutting down")
            self.running = False

        signal.signal(signal.SIGINT, shutdown_handler)
        signal.signal(signal.SIGTERM, shutdown_handler)

        try:
            while self.running:
                try:
                    conn, _ = server.accept()
                    threading.Thread(target=self.handle_client, args=(conn,), daemon=True).start()
                except socket.timeout:
                    pass
                except OSError:
                    # Socket closed by the stop command
                    if self.running:
                        raise
                    break

                self.pump_events()
        finally:
            self.cleanup(server)

    def cleanup(self, server):
        """Clean up resources with signal protection"""
        original_int = signal.signal(signal.SIGINT, signal.SIG_IGN)
        original_term = signal.signal(signal.SIGTERM, signal.SIG_IGN)

        try:
            self.running = False
            self.transport.cleanup()

            try:
                server.close()
            except OSError:
                pass

            for f in [self.config.LOCK_FILE, self.config.PID_FILE, self.config.SOCKET_FILE]:
                if os.path.exists(f):
                    try:
                        os.remove(f)
                    except OSError as e:
                        self.log_action("WARNING", f"Could not remove {f}: {str(e)}")

            self.log_action("INFO", "Cleanup completed.")
        finally:
            signal.signal(signal.SIGINT, original_int)
            signal.signal(signal.SIGTERM, original_term)


def is_daemon_running(config):
    """Verify daemon is actually running with PID and process name"""
    if not os.path.exists(config.PID_FILE):
        return False

    try:
        with open(config.PID_FILE, "r") as f:
            pid = int(f.read().strip())

        if pid == os.getpid():
            return False
        cmdline = " ".join(psutil.Process(pid).cmdline())
        return "ayah_player" in cmdline or "ayah-daemon" in cmdline
    except (ValueError, OSError, psutil.Error):
        return False


def cleanup_orphaned_files(config):
    """Remove PID/socket files if daemon not running"""
    if os.path.exists(config.PID_FILE) and not is_daemon_running(config):
        for f in [config.PID_FILE, config.SOCKET_FILE]:
            try:
                if os.path.exists(f):
                    os.remove(f)
            except OSError as e:
                print(f"Cleanup warning: {str(e)}", file=sys.stderr)


def send_command(config, command_line, timeout=5):
    """Send a raw command line to the running daemon and return its reply"""
    client = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    client.settimeout(timeout)
    try:
        client.connect(config.SOCKET_FILE)
        client.sendall(command_line.encode() + b"\n")
        chunks = []
        while True:
            chunk = client.recv(4096)
            if not chunk:
                break
            chunks.append(chunk)
        return b"".join(chunks).decode().strip()
    finally:
        client.close()


def about():
    """Generate formatted about information with command documentation"""
    about_info = """
    ┌──────────────────────────────────────────────────────┐
    │                  Ayah Player Daemon                  │
    │                  Version 1.0.0                       │
    └──────────────────────────────────────────────────────┘

    Continuous Quran recitation, one verse file at a time.

    • Chapter, juz, hizb and rub ranges
    • Gapless auto-advance across chapter boundaries
    • Optional auto replay of the whole range
    • Any reciter published by the content API
    • Configurable through ~/.config/ayah-player/config.ini

    ┌──────────────────────────────────────────────────────┐
    │                 Supported Commands                   │
    └──────────────────────────────────────────────────────┘
    """

    commands = [
        ("start", "Initialize the daemon process"),
        ("stop", "Terminate the daemon"),
        ("reciters", "List available reciters"),
        ("reciter <id>", "Select a reciter"),
        ("load <n>", "Load a whole chapter"),
        ("load <mode> <n>", "Load chapter, juz, hizb or rub <n>"),
        ("play", "Resume audio playback"),
        ("pause", "Pause current playback"),
        ("toggle", "Play/pause"),
        ("prev", "Previous verse"),
        ("next", "Next verse"),
        ("seek <seconds>", "Seek within the current verse"),
        ("volume <0-1>", "Set volume"),
        ("mute", "Mute/unmute"),
        ("repeat", "Toggle auto replay of the range"),
        ("retry", "Reload the current verse after an error"),
        ("status", "Get playback status"),
        ("log <n>", "Show the last n log lines"),
        ("cleanup", "Clean up orphaned runtime files"),
        ("config", "Generate and override user config file"),
        ("help", "Show this information"),
    ]

    cmd_list = "\n".join([f"  {cmd[0]:<18} {cmd[1]}" for cmd in commands])

    print(f"{about_info}\n{cmd_list}\n\n    GPLv3 License")
    return True


def print_usage():
    print("Usage: ayah-daemon <command> [arguments]")
    print("Run 'ayah-daemon help' for the list of commands")


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if not argv:
        print_usage()
        return 1

    config = ConfigManager()
    command = argv[0]

    if command == "start":
        if is_daemon_running(config):
            print("Error: Daemon already running")
            return 1
        Daemon(config).handle_start()
        return 0
    if command == "cleanup":
        cleanup_orphaned_files(config)
        print("Orphaned files removed")
        return 0
    if command in ("about", "help"):
        about()
        return 0
    if command == "config":
        config.generate_default_config()
        print(f"Generated config at {config.USER_CONFIG_FILE}")
        return 0

    if not is_daemon_running(config):
        print("Error: Daemon not running, Start it first with: ayah-daemon start")
        return 1

    try:
        print(send_command(config, " ".join(argv)))
    except (ConnectionRefusedError, FileNotFoundError, socket.timeout):
        print("Error: Daemon unavailable")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
