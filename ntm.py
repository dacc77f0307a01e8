#!/usr/bin/env python3
"""ntm - named tmux manager for AI coding agents.

Spawns labeled groups of agent CLIs (Claude, Codex, Gemini) into the panes
of a tmux session, broadcasts prompts to them by group, and sends canned
prompts picked from a command palette.
"""

import argparse
import json
import os
import platform
import re
import shlex
import shutil
import subprocess
import sys
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union


# Constants
PROG = "ntm"
DEFAULT_PANES = 10
DEFAULT_LOCALE = "en_US.UTF-8"
LABEL_SEPARATOR = "__"
ADDED_SUFFIX = "added"
RESERVED_SESSION_CHARS = (":", ".")

# Exit codes
EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_FOUND = 2
EXIT_EMPTY = 3  # command ran but matched nothing

# Seconds to wait between the literal text and Enter. Multiline payloads
# take longer for agent CLIs to ingest.
SUBMIT_DELAY = 0.1
SUBMIT_DELAY_MULTILINE = 0.5

# Restart sends Ctrl-C this many times; agent CLIs want two to exit.
RESTART_INTERRUPTS = 2
RESTART_SETTLE_SECONDS = 0.5

# Palette table rows containing this word are header rows
TABLE_HEADER_SENTINEL = "icon"
PALETTE_DETECT_LINES = 5

# tmux list-panes format; title goes last since it is free text
PANE_FORMAT = "\t".join([
    "#{pane_id}",
    "#{window_index}",
    "#{pane_index}",
    "#{pane_current_command}",
    "#{pane_width}",
    "#{pane_height}",
    "#{pane_title}",
])


class Group(str, Enum):
    """Agent kinds that can be spawned and addressed as a group."""
    CLAUDE = "cc"
    CODEX = "cod"
    GEMINI = "gmi"

    @property
    def marker(self) -> str:
        """Substring identifying this group's panes in a pane title."""
        return f"{LABEL_SEPARATOR}{self.value}"

    @property
    def display_name(self) -> str:
        return GROUP_DISPLAY_NAMES[self.value]


# Spawn order
GROUP_ORDER = (Group.CLAUDE, Group.CODEX, Group.GEMINI)

GROUP_DISPLAY_NAMES = {
    "cc": "Claude",
    "cod": "Codex",
    "gmi": "Gemini",
}

DEFAULT_AGENT_COMMANDS = {
    Group.CLAUDE: ('NODE_OPTIONS="--max-old-space-size=32768" ENABLE_BACKGROUND_TASKS=1 '
                   'claude --dangerously-skip-permissions'),
    Group.CODEX: ('codex --dangerously-bypass-approvals-and-sandbox -m gpt-5.1-codex-max '
                  '-c model_reasoning_effort="high" -c model_reasoning_summary_format=experimental '
                  '--enable web_search_request'),
    Group.GEMINI: "gemini --yolo",
}

# Binary each group needs on PATH, and how to install it
AGENT_CLIS = {
    Group.CLAUDE: ("claude", "npm install -g @anthropic-ai/claude-code"),
    Group.CODEX: ("codex", "npm install -g @openai/codex"),
    Group.GEMINI: ("gemini", "npm install -g @google/gemini-cli"),
}

# Linux package managers, probed in order for remediation hints
LINUX_PACKAGE_MANAGERS = [
    ("apt-get", "sudo apt-get update && sudo apt-get install -y {package}"),
    ("apt", "sudo apt update && sudo apt install -y {package}"),
    ("dnf", "sudo dnf install -y {package}"),
    ("yum", "sudo yum install -y {package}"),
    ("pacman", "sudo pacman -S --noconfirm {package}"),
    ("zypper", "sudo zypper install -y {package}"),
    ("apk", "sudo apk add {package}"),
]

LABEL_PATTERN = re.compile(
    r"^(?P<session>.+)__(?P<group>cc|cod|gmi)_(?:(?P<added>added)_)?(?P<ordinal>\d+)$"
)

SAMPLE_PALETTE = """\
# NTM Command Palette
#
# Format: ### command_key | Display Label
# Followed by the prompt text on the lines below it.
# "## Category" lines group commands and are not sent anywhere.

## Quick Start

### fresh_review | Fresh Eyes Review
Carefully reread the latest code changes and fix any obvious bugs or confusion you spot.

### fix_bug | Fix the Bug
Diagnose the root cause of the reported issue and implement a real fix, not a workaround.

### git_commit | Commit Changes
Commit all changed files with detailed commit messages and push.

## Coordination

### status_update | Status Update
Summarize current progress, blockers, and next steps.
"""


ROOT_HELP_DESCRIPTION = """\
Run fleets of AI coding agents side by side in one tmux session.

ntm spawns Claude (cc), Codex (cod) and Gemini (gmi) agents into the panes
of a named tmux session, labels every pane <session>__<group>_<n>, and lets
you address them as a group: broadcast a prompt to all Codex agents,
interrupt every agent at once, or pick a canned prompt from the palette.

The first pane of every session is reserved for you and never receives
group broadcasts.
"""

ROOT_HELP_EPILOG = """\
Quick Start:
  1. Spawn agents:       ntm spawn myproject 2 2 1
  2. Check status:       ntm status myproject
  3. Broadcast:          ntm broadcast myproject cod "run the test suite"
  4. Command palette:    ntm palette myproject
  5. Clean up:           ntm kill myproject

Command Groups:
  Sessions:
    create (cnt)        Create a session with N empty panes
    spawn (sat)         Create a session and launch agents
    add (ant)           Add agents to an existing session
    quick (qps)         New project dir + git init + spawn
    attach (rnt)        Reattach (offers to create if missing)
    list (lnt)          List sessions with agent counts
    kill (knt)          Kill a session

  Panes:
    status (snt)        Show panes and per-group agent counts
    view (vnt)          Unzoom and tile every window
    zoom (znt)          Zoom a pane by index or group
    peek                Print recent output of a pane
    save (sso)          Save every pane's output to files

  Agents:
    send (sct)          Send text to panes (filters: -s, --cc/--cod/--gmi)
    broadcast (bp)      Send a prompt to cc, cod, gmi or all agents
    interrupt (int)     Send Ctrl-C to every agent pane
    restart             Interrupt agents and relaunch them
    palette (ncp)       Pick a canned prompt and a target
    deps (cad)          Check that the agent CLIs are installed

Environment:
  PROJECTS_BASE         Parent of project directories
                        (default: ~/Developer on macOS, /data/projects elsewhere)
  NTM_PALETTE_CONFIG    Palette file (default: ~/.config/ntm/command_palette.md)
  NTM_LOG_DIR           Event log directory (default: $XDG_DATA_HOME/ntm-logs)
  NTM_TMUX_SOCKET       tmux socket name (same as --socket)
  NTM_CC_CMD, NTM_COD_CMD, NTM_GMI_CMD
                        Launch command for each agent group
  NTM_BROADCAST_DELAY   Seconds to pause between panes when broadcasting

Exit Codes:
  0  Success
  1  Error (invalid input, tmux failure, aborted confirmation)
  2  Session not found (also argparse usage errors)
  3  Nothing matched (no pane received the command)
"""

SPAWN_HELP_DESCRIPTION = """\
Create a session (if needed) and launch agents into its panes.

The project directory <PROJECTS_BASE>/<session> is used as the working
directory; you are asked before it is created. Agents are launched in the
order cc, cod, gmi into the unlabeled panes after the first (user) pane.
Missing panes are split off and the layout is re-tiled after each split.
"""

SPAWN_HELP_EPILOG = """\
Examples:
  # Two Claude, two Codex, one Gemini agent
  ntm spawn myproject 2 2 1

  # Three Claude agents only
  sat myproject 3

  # Spawn without attaching (for scripts)
  ntm spawn myproject 1 1 --no-attach

Notes:
  Spawning is not idempotent: running it twice launches a second set of
  agents into new panes. Use 'ntm add' to grow an existing session.

See Also:
  ntm add --help        Add agents to a running session
  ntm status --help     See what is running where
"""

ADD_HELP_DESCRIPTION = """\
Add agents to an existing session.

Each agent gets a freshly split pane labeled <session>__<group>_added_<n>
so late additions are easy to tell apart from the initial set.
"""

SEND_HELP_DESCRIPTION = """\
Send text to panes of a session.

The text is typed literally into each matching pane and then submitted
with a separate Enter key press. Without filters every pane receives it,
including the user pane; use -s to skip the user pane or a group flag to
reach only that group's agents.
"""

SEND_HELP_EPILOG = """\
Examples:
  # Every pane except the user pane
  ntm send -s myproject "git status"

  # Only Claude agents
  ntm send --cc myproject "/exit"

  # One specific pane
  ntm send --pane 3 myproject "continue"

  # Stagger sends by two seconds
  ntm send -s --delay 2 myproject "run the tests"

Exit Codes:
  0  Sent to at least one pane
  2  Session not found
  3  No pane matched the filter
"""

BROADCAST_HELP_DESCRIPTION = """\
Send a prompt to all agents of one group.

Targets: cc, cod, gmi, or all (every pane except the user pane).
"""

INTERRUPT_HELP_DESCRIPTION = """\
Send Ctrl-C to every agent pane of a session.

Only panes whose title carries an agent label are interrupted; the user
pane is never touched.
"""

RESTART_HELP_DESCRIPTION = """\
Interrupt agents and launch them again in the same panes.

Each agent pane receives Ctrl-C twice, then its group's launch command.
Pane labels are kept.
"""

KILL_HELP_DESCRIPTION = """\
Kill a session and every process running in it.

Asks for confirmation unless -f is given.
"""

STATUS_HELP_DESCRIPTION = """\
Show every pane of a session with its label, running command and size,
followed by the number of agents per group.
"""

PALETTE_HELP_DESCRIPTION = """\
Pick a canned prompt and send it to a group of agents.

Commands are read from the palette file on every invocation. With fzf
installed you get fuzzy search with a prompt preview; otherwise (or with
--no-fzf) a numbered menu is shown. Cancelling at any step sends nothing.
"""

PALETTE_HELP_EPILOG = """\
Palette Format:
  ## Category
  ### command_key | Display Label
  Prompt text, possibly
  spanning several lines.

  The older table format is also accepted:
  | key | prompt |

Examples:
  # Inside tmux the current session is used
  ntm palette

  # Explicit session and palette file
  ntm palette myproject --config ~/prompts.md

  # Create a sample palette file
  ntm palette-init
"""


# =============================================================================
# Errors
# =============================================================================

class NtmError(Exception):
    """Base class for errors reported to the user."""
    exit_code = EXIT_ERROR

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.hint = hint


class UsageError(NtmError):
    """Missing or inconsistent arguments."""


class ValidationError(NtmError):
    """A session name, count or pane index is not acceptable."""


class SessionNotFound(NtmError):
    """The operation needs a session that does not exist."""
    exit_code = EXIT_NOT_FOUND

    def __init__(self, session: str, hint: Optional[str] = None):
        super().__init__(f"session '{session}' not found", hint=hint)
        self.session = session


class CapabilityFailure(NtmError):
    """tmux (or another external tool) is missing or a call to it failed."""


class ConfigError(NtmError):
    """The palette file or environment configuration is unusable."""


class Aborted(NtmError):
    """The user declined a confirmation prompt."""


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class Config:
    """Settings resolved once at startup and passed to every operation."""
    projects_base: Path
    palette_path: Path
    log_dir: Path
    tmux_socket: Optional[str] = None
    agent_commands: dict = field(default_factory=lambda: dict(DEFAULT_AGENT_COMMANDS))
    broadcast_delay: float = 0.0
    locale: str = DEFAULT_LOCALE
    platform: str = "Linux"
    environ: dict = field(default_factory=lambda: dict(os.environ), repr=False)

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, system: Optional[str] = None) -> "Config":
        """Build config from environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            system: Platform name as returned by platform.system()
        """
        env = os.environ if environ is None else environ
        system = system or platform.system()
        home = Path(env.get("HOME") or str(Path.home()))

        if env.get("PROJECTS_BASE"):
            projects_base = Path(env["PROJECTS_BASE"]).expanduser()
        elif system == "Darwin":
            projects_base = home / "Developer"
        else:
            projects_base = Path("/data/projects")

        if env.get("NTM_PALETTE_CONFIG"):
            palette_path = Path(env["NTM_PALETTE_CONFIG"]).expanduser()
        else:
            palette_path = home / ".config" / "ntm" / "command_palette.md"

        if env.get("NTM_LOG_DIR"):
            log_dir = Path(env["NTM_LOG_DIR"]).expanduser()
        else:
            data_home = Path(env.get("XDG_DATA_HOME") or str(home / ".local" / "share"))
            log_dir = data_home / "ntm-logs"

        agent_commands = dict(DEFAULT_AGENT_COMMANDS)
        for group in GROUP_ORDER:
            override = env.get(f"NTM_{group.value.upper()}_CMD")
            if override:
                agent_commands[group] = override

        raw_delay = env.get("NTM_BROADCAST_DELAY", "")
        try:
            broadcast_delay = float(raw_delay) if raw_delay else 0.0
        except ValueError:
            raise ConfigError(f"NTM_BROADCAST_DELAY must be a number, got '{raw_delay}'")
        if broadcast_delay < 0:
            raise ConfigError(f"NTM_BROADCAST_DELAY must not be negative, got '{raw_delay}'")

        return cls(
            projects_base=projects_base,
            palette_path=palette_path,
            log_dir=log_dir,
            tmux_socket=env.get("NTM_TMUX_SOCKET") or None,
            agent_commands=agent_commands,
            broadcast_delay=broadcast_delay,
            locale=env.get("LANG") or DEFAULT_LOCALE,
            platform=system,
            environ=dict(env),
        )

    def project_dir(self, name: str) -> Path:
        """Working directory for a session/project name."""
        return self.projects_base / name

    def launch_command(self, group: Union[Group, str], directory: Path) -> str:
        """Shell line that starts a group's agent in the project directory."""
        group = Group(group)
        return f"cd {shlex.quote(str(directory))} && {self.agent_commands[group]}"

    def tmux_env(self) -> dict:
        """Environment for tmux calls, with the locale filled in when unset."""
        env = dict(self.environ)
        env.setdefault("LANG", self.locale)
        env.setdefault("LC_ALL", self.locale)
        return env


def install_hint(package: str, system: str) -> str:
    """Suggest how to install a missing tool on this platform."""
    if system == "Darwin":
        if shutil.which("brew"):
            return f"install it with: brew install {package}"
        return f"install Homebrew from https://brew.sh, then run: brew install {package}"
    for manager, command in LINUX_PACKAGE_MANAGERS:
        if shutil.which(manager):
            return "install it with: " + command.format(package=package)
    return f"install {package} with your distribution's package manager"


def ensure_tmux_available(config: Config) -> None:
    """Raise CapabilityFailure with a remediation hint if tmux is missing."""
    if shutil.which("tmux") is None:
        raise CapabilityFailure("tmux not found", hint=install_hint("tmux", config.platform))


def log_event(config: Config, session: str, event: str, message: str = "") -> None:
    """Append a timestamped event line to the session's log file.

    Log format: ISO_TIMESTAMP [EVENT] message
    """
    log_path = config.log_dir / f"{session}.log"
    timestamp = datetime.now().isoformat(timespec="seconds")
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(log_path, "a") as f:
            f.write(f"{timestamp} [{event}] {message}\n")
    except OSError as e:
        print(f"{PROG}: warning: cannot write event log {log_path}: {e}", file=sys.stderr)


# =============================================================================
# Pane Addressing
# =============================================================================

@dataclass(frozen=True)
class AgentAddress:
    """Identity of an agent decoded from its pane label."""
    session: str
    group: Group
    ordinal: int
    added: bool = False


def encode_label(session: str, group: Union[Group, str], ordinal: int, added: bool = False) -> str:
    """Build the pane label for an agent.

    >>> encode_label("demo", "cc", 1)
    'demo__cc_1'
    >>> encode_label("demo", "cod", 2, added=True)
    'demo__cod_added_2'
    """
    group = Group(group)
    middle = f"{group.value}_{ADDED_SUFFIX}" if added else group.value
    return f"{session}{LABEL_SEPARATOR}{middle}_{ordinal}"


def label_matches(label: str, group: Union[Group, str]) -> bool:
    """True if the label carries the group's marker anywhere."""
    return Group(group).marker in label


def label_group(label: str) -> Optional[Group]:
    """First group whose marker appears in the label, in spawn order."""
    for group in GROUP_ORDER:
        if group.marker in label:
            return group
    return None


def decode_label(label: str) -> Optional[AgentAddress]:
    """Parse a well-formed agent label; None for anything else."""
    match = LABEL_PATTERN.match(label)
    if not match:
        return None
    return AgentAddress(
        session=match.group("session"),
        group=Group(match.group("group")),
        ordinal=int(match.group("ordinal")),
        added=match.group("added") is not None,
    )


def parse_group(value: str) -> Group:
    try:
        return Group(value.strip().lower())
    except ValueError:
        raise ValidationError(f"unknown agent group '{value}' (expected cc, cod or gmi)")


# =============================================================================
# Validation
# =============================================================================

def validate_session_name(name: str) -> str:
    """Reject names tmux cannot use as a session target."""
    if not name:
        raise ValidationError("session name cannot be empty")
    if any(c in name for c in RESERVED_SESSION_CHARS):
        raise ValidationError("session name cannot contain ':' or '.'")
    return name


def marker_collisions(name: str) -> list[Group]:
    """Groups whose marker already occurs inside a session name.

    Panes of such a session match that group's filter regardless of their
    own label. Names are still accepted; callers warn.
    """
    return [g for g in GROUP_ORDER if g.marker in name]


def validate_count(value, what: str = "count") -> int:
    """Parse a non-negative integer agent count."""
    if isinstance(value, bool):
        raise ValidationError(f"{what} must be a non-negative integer (got '{value}')")
    if isinstance(value, int):
        if value < 0:
            raise ValidationError(f"{what} must be a non-negative integer (got '{value}')")
        return value
    text = str(value).strip()
    if not re.fullmatch(r"[0-9]+", text):
        raise ValidationError(f"{what} must be a non-negative integer (got '{value}')")
    return int(text)


def normalize_counts(counts: dict) -> dict:
    """Validate a group -> count mapping, filling absent groups with 0."""
    result = {group: 0 for group in GROUP_ORDER}
    for key, value in counts.items():
        group = parse_group(key.value if isinstance(key, Group) else str(key))
        result[group] = validate_count(value, what=f"{group.value} count")
    return result


def format_counts(counts: dict) -> str:
    return ", ".join(f"{counts.get(g, 0)}x {g.value}" for g in GROUP_ORDER)


# =============================================================================
# Tmux Operations
# =============================================================================

@dataclass
class Pane:
    """One tmux pane as reported by list-panes."""
    pane_id: str
    window_index: int
    index: int
    title: str
    command: str = ""
    width: int = 0
    height: int = 0

    @classmethod
    def from_line(cls, line: str) -> "Pane":
        """Parse one line produced with PANE_FORMAT."""
        parts = line.split("\t", 6)
        if len(parts) != 7:
            raise CapabilityFailure(f"unexpected tmux list-panes output: {line!r}")
        pane_id, window_index, index, command, width, height, title = parts
        return cls(
            pane_id=pane_id,
            window_index=int(window_index),
            index=int(index),
            title=title,
            command=command,
            width=int(width),
            height=int(height),
        )

    @property
    def group(self) -> Optional[Group]:
        return label_group(self.title)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["group"] = self.group.value if self.group else None
        return d


class Tmux:
    """Thin wrapper over the tmux command line.

    Every call goes through run(), which turns a missing tmux binary or a
    failing tmux command into CapabilityFailure.
    """

    def __init__(self, socket: Optional[str] = None, env: Optional[dict] = None):
        self.socket = socket
        self.env = env

    def prefix(self) -> list[str]:
        """["tmux"] or ["tmux", "-L", socket] for an isolated server."""
        if self.socket:
            return ["tmux", "-L", self.socket]
        return ["tmux"]

    def run(self, *args, check: bool = True) -> subprocess.CompletedProcess:
        cmd = self.prefix() + [str(a) for a in args]
        try:
            return subprocess.run(cmd, capture_output=True, text=True, check=check, env=self.env)
        except FileNotFoundError:
            raise CapabilityFailure("tmux not found", hint="install tmux and retry")
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
            raise CapabilityFailure(f"tmux {args[0]} failed: {detail}")

    # Sessions

    def has_session(self, session: str) -> bool:
        # '=' forces an exact match instead of tmux's prefix matching
        return self.run("has-session", "-t", f"={session}", check=False).returncode == 0

    def new_session(self, session: str, directory: Path) -> None:
        self.run("new-session", "-d", "-s", session, "-c", str(directory))

    def list_sessions(self) -> list[str]:
        """Session names; empty when no tmux server is running."""
        result = self.run("list-sessions", "-F", "#{session_name}", check=False)
        if result.returncode != 0:
            return []
        return [s for s in result.stdout.splitlines() if s]

    def kill_session(self, session: str) -> None:
        self.run("kill-session", "-t", f"={session}")

    def current_session(self) -> Optional[str]:
        """Session of the client we are running inside, if any."""
        if not os.environ.get("TMUX"):
            return None
        result = self.run("display-message", "-p", "#{session_name}", check=False)
        name = result.stdout.strip()
        return name or None

    def attach(self, session: str) -> None:
        """Switch to the session inside tmux, otherwise attach (replaces this process)."""
        if os.environ.get("TMUX"):
            self.run("switch-client", "-t", session)
        else:
            os.execvp("tmux", self.prefix() + ["attach-session", "-t", session])

    # Windows

    def list_windows(self, session: str) -> list[int]:
        result = self.run("list-windows", "-t", session, "-F", "#{window_index}")
        return [int(w) for w in result.stdout.split()]

    def first_window(self, session: str) -> int:
        """Lowest window index; honors the user's base-index setting."""
        windows = self.list_windows(session)
        if not windows:
            raise CapabilityFailure(f"could not determine first window for session '{session}'")
        return windows[0]

    def select_layout(self, target: str, layout: str = "tiled") -> None:
        self.run("select-layout", "-t", target, layout)

    def window_zoomed(self, target: str) -> bool:
        result = self.run("display-message", "-t", target, "-p", "#{window_zoomed_flag}", check=False)
        return result.stdout.strip() == "1"

    # Panes

    def split_window(self, target: str, directory: Optional[Path] = None) -> str:
        """Split a window and return the new pane's id."""
        args = ["split-window", "-t", target]
        if directory is not None:
            args += ["-c", str(directory)]
        args += ["-P", "-F", "#{pane_id}"]
        return self.run(*args).stdout.strip()

    def list_panes(self, target: str, whole_session: bool = False) -> list[Pane]:
        """Panes of a window, or of every window with whole_session=True.

        Sorted by window index, then pane index.
        """
        args = ["list-panes"]
        if whole_session:
            args.append("-s")
        args += ["-t", target, "-F", PANE_FORMAT]
        result = self.run(*args)
        panes = [Pane.from_line(line) for line in result.stdout.splitlines() if line]
        panes.sort(key=lambda p: (p.window_index, p.index))
        return panes

    def set_pane_title(self, pane: str, title: str) -> None:
        self.run("select-pane", "-t", pane, "-T", title)

    def select_pane(self, pane: str) -> None:
        self.run("select-pane", "-t", pane)

    def toggle_zoom(self, target: str) -> None:
        self.run("resize-pane", "-t", target, "-Z")

    def send_literal(self, pane: str, text: str) -> None:
        self.run("send-keys", "-t", pane, "-l", text)

    def send_keys(self, pane: str, *keys: str) -> None:
        self.run("send-keys", "-t", pane, *keys)

    def send(self, pane: str, text: str, enter: bool = True) -> None:
        """Type text into a pane, then submit it with a separate Enter.

        Args:
            pane: Pane id or target
            text: Text sent literally (no key-name interpretation)
            enter: Whether to press Enter afterwards
        """
        self.send_literal(pane, text)
        if enter:
            time.sleep(SUBMIT_DELAY_MULTILINE if "\n" in text else SUBMIT_DELAY)
            self.send_keys(pane, "Enter")

    def capture_pane(self, pane: str, lines: int = 0) -> str:
        """Pane contents, with `lines` of scrollback when > 0."""
        args = ["capture-pane", "-t", pane, "-p"]
        if lines > 0:
            args += ["-S", f"-{lines}"]
        return self.run(*args).stdout


def require_session(tmux: Tmux, session: str, hint: Optional[str] = None) -> None:
    """Validate the name, then fail unless the session exists.

    The name is checked first so `demo:0` or `demo.1` never reaches tmux,
    which would otherwise parse it as a window or pane target.
    """
    validate_session_name(session)
    if not tmux.has_session(session):
        raise SessionNotFound(session, hint=hint)


# =============================================================================
# Targeted Dispatch
# =============================================================================

@dataclass(frozen=True)
class AllPanes:
    """Every pane, the user pane included."""


@dataclass(frozen=True)
class AllExceptFirst:
    """Every pane except the first (user) pane."""


@dataclass(frozen=True)
class GroupTarget:
    """Panes whose label carries the group's marker."""
    group: Group


@dataclass(frozen=True)
class PaneIndex:
    """A single pane of the first window, by index."""
    index: int


TargetSpec = Union[AllPanes, AllExceptFirst, GroupTarget, PaneIndex]


def parse_target(text: str) -> TargetSpec:
    """Map a target word to a TargetSpec.

    'all' means all agents, i.e. every pane but the user pane;
    'everything' includes the user pane.
    """
    word = text.strip().lower()
    if word == "all":
        return AllExceptFirst()
    if word == "everything":
        return AllPanes()
    if word.isdigit():
        return PaneIndex(int(word))
    try:
        return GroupTarget(Group(word))
    except ValueError:
        raise ValidationError(
            f"invalid target '{text}' (expected cc, cod, gmi, all, everything or a pane index)"
        )


def describe_target(spec: TargetSpec) -> str:
    if isinstance(spec, AllPanes):
        return "all panes"
    if isinstance(spec, AllExceptFirst):
        return "all agents"
    if isinstance(spec, GroupTarget):
        return f"{spec.group.display_name} agents"
    if isinstance(spec, PaneIndex):
        return f"pane {spec.index}"
    raise TypeError(f"unknown target spec: {spec!r}")


def resolve_targets(spec: TargetSpec, panes: list[Pane]) -> list[Pane]:
    """Select the panes a target spec addresses, keeping inventory order."""
    if isinstance(spec, AllPanes):
        return list(panes)
    if isinstance(spec, AllExceptFirst):
        return list(panes[1:])
    if isinstance(spec, GroupTarget):
        return [p for p in panes if label_matches(p.title, spec.group)]
    if isinstance(spec, PaneIndex):
        if panes:
            first_window = panes[0].window_index
            for pane in panes:
                if pane.window_index == first_window and pane.index == spec.index:
                    return [pane]
        raise ValidationError(f"pane {spec.index} not found")
    raise TypeError(f"unknown target spec: {spec!r}")


def dispatch(tmux: Tmux, session: str, spec: TargetSpec, payload: str, delay: float = 0.0) -> int:
    """Send payload + Enter to every pane the spec selects.

    The pane inventory is read fresh on every call. Panes are messaged one
    at a time in inventory order, pausing `delay` seconds between panes.

    Returns:
        Number of panes that received the payload (0 means nothing matched)
    """
    if not payload:
        raise UsageError("no command specified")
    require_session(tmux, session)

    panes = tmux.list_panes(session, whole_session=True)
    targets = resolve_targets(spec, panes)
    for i, pane in enumerate(targets):
        if i > 0 and delay > 0:
            time.sleep(delay)
        tmux.send(pane.pane_id, payload)
    return len(targets)


def interrupt_agents(tmux: Tmux, session: str) -> int:
    """Send Ctrl-C to every labeled agent pane. Returns the count."""
    require_session(tmux, session)

    count = 0
    for pane in tmux.list_panes(session, whole_session=True):
        if label_group(pane.title) is not None:
            tmux.send_keys(pane.pane_id, "C-c")
            count += 1
    return count


# =============================================================================
# Status
# =============================================================================

@dataclass
class SessionStatus:
    """Pane inventory of a session plus agent counts per group."""
    session: str
    panes: list[Pane]
    counts: dict

    def to_dict(self) -> dict:
        return {
            "session": self.session,
            "panes": [p.to_dict() for p in self.panes],
            "counts": {g.value: self.counts.get(g, 0) for g in GROUP_ORDER},
        }


def session_status(tmux: Tmux, session: str) -> SessionStatus:
    require_session(tmux, session)
    panes = tmux.list_panes(session, whole_session=True)
    counts = {
        group: sum(1 for p in panes if label_matches(p.title, group))
        for group in GROUP_ORDER
    }
    return SessionStatus(session=session, panes=panes, counts=counts)


def format_status(status: SessionStatus, directory: Path) -> str:
    rule = "─" * 53
    lines = [
        "",
        f"Session: {status.session}",
        f"Directory: {directory}",
        "",
        "Panes:",
        rule,
    ]
    for pane in status.panes:
        lines.append(
            f"  {pane.index}: {pane.title} │ {pane.command} │ {pane.width}x{pane.height}"
        )
    lines.append(rule)
    lines.append(f"Agents: {format_counts(status.counts)}")
    lines.append("")
    return "\n".join(lines)


# =============================================================================
# Session Lifecycle
# =============================================================================

def prompt_yes_no(question: str) -> bool:
    """Ask a y/N question on stdin; anything but yes is no."""
    try:
        answer = input(f"{question} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


@dataclass
class Agent:
    """An agent launched into a pane."""
    pane_id: str
    label: str
    group: Group
    ordinal: int
    added: bool = False


class SessionManager:
    """Creates sessions, grows their pane sets and launches agents."""

    def __init__(self, config: Config, tmux: Tmux,
                 confirm: Optional[Callable[[str], bool]] = None):
        self.config = config
        self.tmux = tmux
        self.confirm = confirm or prompt_yes_no

    def check_name(self, name: str) -> None:
        validate_session_name(name)
        for group in marker_collisions(name):
            print(f"{PROG}: warning: session name '{name}' contains '{group.marker}'; "
                  f"every pane of it will match the {group.value} filter", file=sys.stderr)

    def require_session(self, session: str) -> None:
        require_session(self.tmux, session)

    def window_target(self, session: str) -> str:
        return f"{session}:{self.tmux.first_window(session)}"

    def ensure_project_dir(self, name: str) -> Path:
        """Return the project directory, creating it if the user agrees."""
        directory = self.config.project_dir(name)
        if directory.is_dir():
            return directory
        print(f"Directory not found: {directory}")
        if not self.confirm("Create it?"):
            raise Aborted(f"directory {directory} was not created")
        directory.mkdir(parents=True, exist_ok=True)
        print(f"Created {directory}")
        return directory

    def ensure_session(self, name: str, panes: int = 1) -> bool:
        """Create the session with `panes` panes unless it already exists.

        Returns:
            True if the session was created, False if it already existed
        """
        self.check_name(name)
        if panes < 1:
            raise ValidationError(f"panes must be a positive integer, got '{panes}'")
        directory = self.ensure_project_dir(name)

        if self.tmux.has_session(name):
            print(f"Session '{name}' already exists")
            return False

        print(f"Creating session '{name}' with {panes} pane(s)...")
        self.tmux.new_session(name, directory)
        self.ensure_pane_count(name, panes)
        print(f"Created session '{name}' with {panes} pane(s)")
        return True

    def ensure_pane_count(self, session: str, required: int) -> list[str]:
        """Split panes until the first window has at least `required`.

        Never removes panes. Returns the ids of the panes created.
        """
        target = self.window_target(session)
        current = len(self.tmux.list_panes(target))
        missing = required - current
        if missing <= 0:
            return []

        directory = self.config.project_dir(session)
        split_dir = directory if directory.is_dir() else None
        print(f"Creating {missing} pane(s) ({current} -> {required})...")
        created = []
        for _ in range(missing):
            created.append(self.tmux.split_window(target, split_dir))
            self.tmux.select_layout(target, "tiled")
        return created

    def _launch(self, session: str, pane_id: str, group: Group, ordinal: int,
                directory: Path, added: bool = False) -> Agent:
        label = encode_label(session, group, ordinal, added=added)
        self.tmux.set_pane_title(pane_id, label)
        self.tmux.send(pane_id, self.config.launch_command(group, directory))
        return Agent(pane_id=pane_id, label=label, group=group, ordinal=ordinal, added=added)

    def spawn_agents(self, session: str, counts: dict) -> list[Agent]:
        """Launch agents into the unlabeled panes after the user pane.

        Panes are split only for the shortfall. Calling this twice spawns a
        second set of agents; existing labels are not consulted.
        """
        self.check_name(session)
        counts = normalize_counts(counts)
        total = sum(counts.values())
        if total <= 0:
            raise UsageError("nothing to spawn (all counts are zero)")

        directory = self.ensure_project_dir(session)
        if not self.tmux.has_session(session):
            print(f"Creating session '{session}' in {directory}...")
            self.tmux.new_session(session, directory)

        panes = self.tmux.list_panes(self.window_target(session))
        free = [p.pane_id for p in panes[1:] if label_group(p.title) is None]
        if len(free) < total:
            free.extend(self.ensure_pane_count(session, len(panes) + total - len(free)))

        print(f"Launching agents: {format_counts(counts)}...")
        slots = iter(free)
        agents = []
        for group in GROUP_ORDER:
            for ordinal in range(1, counts[group] + 1):
                agents.append(self._launch(session, next(slots), group, ordinal, directory))

        log_event(self.config, session, "SPAWN", format_counts(counts))
        print(f"✓ Launched {total} agent(s)")
        return agents

    def add_agents(self, session: str, counts: dict) -> list[Agent]:
        """Split a new pane per agent and launch it with an _added_ label."""
        counts = normalize_counts(counts)
        require_session(
            self.tmux, session, hint="use 'ntm spawn' to create a new session with agents")
        total = sum(counts.values())
        if total <= 0:
            raise UsageError("nothing to add (all counts are zero)")

        directory = self.config.project_dir(session)
        target = self.window_target(session)
        print(f"Adding {total} agent(s) to session '{session}'...")

        agents = []
        for group in GROUP_ORDER:
            for ordinal in range(1, counts[group] + 1):
                pane_id = self.tmux.split_window(target, directory)
                self.tmux.select_layout(target, "tiled")
                agents.append(self._launch(session, pane_id, group, ordinal, directory, added=True))

        log_event(self.config, session, "ADD", format_counts(counts))
        print(f"✓ Added {format_counts(counts)}")
        return agents

    def restart_agents(self, session: str, group: Optional[Group] = None) -> int:
        """Interrupt agent panes and relaunch their group's command."""
        self.require_session(session)
        directory = self.config.project_dir(session)

        restarted = 0
        for pane in self.tmux.list_panes(session, whole_session=True):
            pane_group = label_group(pane.title)
            if pane_group is None or (group is not None and pane_group != group):
                continue
            for _ in range(RESTART_INTERRUPTS):
                self.tmux.send_keys(pane.pane_id, "C-c")
                time.sleep(RESTART_SETTLE_SECONDS)
            self.tmux.send(pane.pane_id, self.config.launch_command(pane_group, directory))
            restarted += 1

        if restarted:
            scope = group.value if group else "all"
            log_event(self.config, session, "RESTART", f"{restarted} agent(s) group={scope}")
        return restarted

    def kill_session(self, session: str, force: bool = False) -> None:
        self.require_session(session)
        if not force:
            pane_count = len(self.tmux.list_panes(session, whole_session=True))
            if not self.confirm(f"Kill session '{session}' with {pane_count} pane(s)?"):
                raise Aborted(f"session '{session}' was not killed")
        self.tmux.kill_session(session)
        log_event(self.config, session, "KILL")

    def zoom(self, session: str, target: str) -> Pane:
        """Zoom a pane of the first window, by index or by group name."""
        self.require_session(session)
        panes = self.tmux.list_panes(self.window_target(session))
        if target.isdigit():
            matches = [p for p in panes if p.index == int(target)]
        else:
            group = parse_group(target)
            matches = [p for p in panes if label_matches(p.title, group)]
        if not matches:
            raise ValidationError(f"no pane found matching '{target}'")

        pane = matches[0]
        self.tmux.select_pane(pane.pane_id)
        self.tmux.toggle_zoom(pane.pane_id)
        return pane

    def view(self, session: str) -> None:
        """Unzoom and tile every window of the session."""
        self.require_session(session)
        for window in self.tmux.list_windows(session):
            target = f"{session}:{window}"
            if self.tmux.window_zoomed(target):
                self.tmux.toggle_zoom(target)
            self.tmux.select_layout(target, "tiled")

    def save_outputs(self, session: str, output_dir: Path, lines: int = 10000) -> tuple[Path, int]:
        """Capture every pane into a timestamped directory.

        Returns:
            (directory written, number of panes saved)
        """
        self.require_session(session)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        save_dir = Path(output_dir) / f"{session}_{timestamp}"
        save_dir.mkdir(parents=True, exist_ok=True)

        panes = self.tmux.list_panes(session, whole_session=True)
        multi_window = len({p.window_index for p in panes}) > 1
        for pane in panes:
            safe_title = re.sub(r"[^A-Za-z0-9_-]", "_", pane.title)
            index = f"{pane.window_index}-{pane.index}" if multi_window else str(pane.index)
            filename = save_dir / f"pane_{index}_{safe_title}.log"
            filename.write_text(self.tmux.capture_pane(pane.pane_id, lines))
        return save_dir, len(panes)

    def quick_setup(self, project: str, counts: dict) -> list[Agent]:
        """Create the project directory with a git repo, then spawn agents.

        A directory created here is removed again if git setup fails.
        """
        self.check_name(project)
        counts = normalize_counts(counts)
        if sum(counts.values()) <= 0:
            raise UsageError("nothing to spawn (all counts are zero)")
        directory = self.config.project_dir(project)
        if not directory.exists():
            print(f"Creating project directory: {directory}")
            directory.mkdir(parents=True)
            try:
                init_git_repo(directory, project)
            except CapabilityFailure:
                shutil.rmtree(directory, ignore_errors=True)
                raise
        return self.spawn_agents(project, counts)


def run_git(directory: Path, *args: str) -> None:
    """Run a git step in directory; failures become CapabilityFailure."""
    try:
        subprocess.run(["git", "-C", str(directory)] + list(args),
                       capture_output=True, text=True, check=True)
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit status {e.returncode}"
        raise CapabilityFailure(f"git {args[0]} failed in {directory}: {detail}")


def init_git_repo(directory: Path, project: str) -> bool:
    """git init + README + initial commit. Returns False if skipped."""
    if (directory / ".git").exists():
        return False
    if shutil.which("git") is None:
        print(f"{PROG}: warning: git not found; skipping git init for {directory}", file=sys.stderr)
        return False

    print("Initializing git repository...")
    run_git(directory, "init")
    (directory / "README.md").write_text(f"# {project}\n")
    run_git(directory, "add", "README.md")
    result = subprocess.run(
        ["git", "-C", str(directory), "commit", "-m", "Initial commit"],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        print(f"{PROG}: warning: initial git commit failed (likely missing git user.name/email); "
              "repository left uncommitted", file=sys.stderr)
    return True


def check_agent_deps() -> tuple[list[str], list[str]]:
    """Split the agent CLIs into (found, missing) by PATH lookup."""
    found, missing = [], []
    for group in GROUP_ORDER:
        binary, _ = AGENT_CLIS[group]
        (found if shutil.which(binary) else missing).append(binary)
    return found, missing


# =============================================================================
# Command Palette
# =============================================================================

@dataclass
class PaletteCommand:
    """A canned prompt from the palette file."""
    key: str
    label: str
    prompt: str


def encode_prompt(prompt: str) -> str:
    """Fold a prompt onto one line (newline -> literal \\n, tab -> space)."""
    return prompt.replace("\t", " ").replace("\n", "\\n")


def decode_prompt(text: str) -> str:
    return text.replace("\\n", "\n")


def _is_category_heading(line: str) -> bool:
    return re.match(r"##\s", line) is not None


def _is_command_heading(line: str) -> bool:
    return re.match(r"###\s", line) is not None


def _parse_command_heading(line: str) -> tuple[str, str]:
    """'### key | Label' -> (key, Label); '### key' -> (key, key)."""
    header = line[3:].strip()
    if "|" in header:
        key, label = header.split("|", 1)
        key, label = key.strip(), label.strip()
        return key, label or key
    return header, header


def _append_command(commands: list, key: Optional[str], label: Optional[str], body: list) -> None:
    lines = list(body)
    while lines and not lines[-1].strip():
        lines.pop()
    if key and lines:
        commands.append(PaletteCommand(key=key, label=label or key, prompt="\n".join(lines)))


def parse_palette_markdown(text: str) -> list[PaletteCommand]:
    """Parse the heading format.

    '## Category' lines close the current command, '### key | Label' lines
    start a new one, and the lines below a command heading are its prompt.
    Blank lines before the first prompt line are skipped, blank lines
    inside the prompt are kept. Commands without a prompt are dropped.
    """
    commands: list[PaletteCommand] = []
    key: Optional[str] = None
    label: Optional[str] = None
    body: list[str] = []

    for line in text.splitlines():
        if _is_command_heading(line):
            _append_command(commands, key, label, body)
            key, label = _parse_command_heading(line)
            body = []
            continue
        if _is_category_heading(line):
            _append_command(commands, key, label, body)
            key, label, body = None, None, []
            continue
        if key is None:
            continue
        if not body and not line.strip():
            continue
        body.append(line.replace("\t", " "))

    _append_command(commands, key, label, body)
    return commands


def parse_palette_table(text: str) -> list[PaletteCommand]:
    """Parse the legacy markdown-table format ('| key | prompt |' rows)."""
    commands = []
    for line in text.splitlines():
        line = line.rstrip()
        if not line.startswith("|"):
            continue
        if TABLE_HEADER_SENTINEL in line or "---" in line:
            continue

        content = line[1:]
        if content.endswith("|"):
            content = content[:-1]
        key, sep, rest = content.partition("|")
        key = key.strip()
        prompt = rest.strip() if sep else key
        if not key:
            continue
        commands.append(PaletteCommand(key=key, label=key, prompt=decode_prompt(prompt)))
    return commands


PALETTE_PARSERS = {
    "markdown": parse_palette_markdown,
    "table": parse_palette_table,
}


def detect_palette_format(text: str) -> str:
    """'table' if one of the first non-blank lines is a table row."""
    head = [line for line in text.splitlines() if line.strip()][:PALETTE_DETECT_LINES]
    if any(line.startswith("|") for line in head):
        return "table"
    return "markdown"


def parse_palette(text: str) -> list[PaletteCommand]:
    return PALETTE_PARSERS[detect_palette_format(text)](text)


def load_palette(path: Path) -> list[PaletteCommand]:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"palette config not found: {path}",
                          hint=f"run '{PROG} palette-init' to create a sample config")
    return parse_palette(text)


def write_sample_palette(path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_PALETTE, encoding="utf-8")


# Target menu entries: (choice word, description)
TARGET_CHOICES = [
    ("all", "All Agents      │ every pane except yours"),
    ("cc", "Claude (cc)     │ anthropic agents only"),
    ("cod", "Codex (cod)     │ openai agents only"),
    ("gmi", "Gemini (gmi)    │ google agents only"),
    ("pane", "Specific Pane   │ choose one pane"),
]


class MenuSelector:
    """Numbered menus on stdin/stdout. Works without fzf."""

    def choose_command(self, commands: list[PaletteCommand], session: str) -> Optional[PaletteCommand]:
        print(f"Command Palette │ Session: {session}")
        for i, command in enumerate(commands, 1):
            print(f"{i:2d}) {command.label}")
        print()
        choice = self._ask(f"Select [1-{len(commands)}, q]: ")
        if choice is None:
            return None
        if not choice.isdigit() or not 1 <= int(choice) <= len(commands):
            raise UsageError(f"invalid selection '{choice}'")
        return commands[int(choice) - 1]

    def choose_target(self, command: PaletteCommand, session: str) -> Optional[str]:
        print()
        print(f"Send \"{command.label}\" to:")
        for i, (_, description) in enumerate(TARGET_CHOICES, 1):
            print(f"  {i}  {description}")
        print("  q  Cancel")
        print()
        choice = self._ask(f"Choice [1-{len(TARGET_CHOICES)}, q]: ")
        if choice is None:
            return None
        if not choice.isdigit() or not 1 <= int(choice) <= len(TARGET_CHOICES):
            raise UsageError(f"invalid choice '{choice}'")
        return TARGET_CHOICES[int(choice) - 1][0]

    def choose_pane(self, panes: list[Pane]) -> Optional[int]:
        print()
        print("Available Panes:")
        for pane in panes:
            group = pane.group
            tag = f"[{group.value}]" if group else "[--]"
            print(f"  {pane.index:>3}  {tag:<5} {pane.title}")
        print()
        choice = self._ask("Pane index: ")
        if choice is None:
            return None
        if not choice.isdigit():
            raise ValidationError(f"pane index must be numeric (got '{choice}')")
        return int(choice)

    def _ask(self, prompt: str) -> Optional[str]:
        """Read one answer; None when the user cancels (q, empty, EOF)."""
        try:
            answer = input(prompt).strip()
        except EOFError:
            return None
        if answer in ("", "q", "Q"):
            return None
        return answer


class FzfSelector(MenuSelector):
    """Fuzzy selection through fzf; the pane picker stays a numbered menu."""

    def choose_command(self, commands: list[PaletteCommand], session: str) -> Optional[PaletteCommand]:
        lines = [f"{i}\t{c.label}\t{encode_prompt(c.prompt)}" for i, c in enumerate(commands)]
        selected = self._fzf(lines, [
            "--delimiter=\t",
            "--with-nth=2",
            "--preview", "printf '%b\\n' {3}",
            "--preview-window=down:45%:wrap",
            f"--header=Command Palette │ Session: {session} │ Enter=select │ Esc=cancel",
            "--prompt=Command: ",
            "--height=90%",
            "--border=rounded",
            "--bind=ctrl-p:toggle-preview",
        ])
        if selected is None:
            return None
        return commands[int(selected.split("\t", 1)[0])]

    def choose_target(self, command: PaletteCommand, session: str) -> Optional[str]:
        lines = [f"{word}\t{description}" for word, description in TARGET_CHOICES]
        selected = self._fzf(lines, [
            "--delimiter=\t",
            "--with-nth=2",
            f"--header=Send \"{command.label}\" to:",
            "--prompt=Target: ",
            "--height=50%",
            "--border=rounded",
            "--no-info",
        ])
        if selected is None:
            return None
        return selected.split("\t", 1)[0]

    def _fzf(self, lines: list[str], options: list[str]) -> Optional[str]:
        """Run fzf over lines; None when the user aborts or nothing matches."""
        try:
            result = subprocess.run(
                ["fzf"] + options,
                input="\n".join(lines),
                stdout=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError:
            raise CapabilityFailure("fzf not found", hint="install fzf or use --no-fzf")
        # fzf: 1 = no match, 130 = Esc / Ctrl-C
        if result.returncode in (1, 130):
            return None
        if result.returncode != 0:
            raise CapabilityFailure(f"fzf failed with exit status {result.returncode}")
        selected = result.stdout.rstrip("\n")
        return selected or None


def make_selector(use_fzf: bool = True) -> MenuSelector:
    if use_fzf and shutil.which("fzf"):
        return FzfSelector()
    return MenuSelector()


@dataclass
class PaletteResult:
    command: PaletteCommand
    target: TargetSpec
    count: int


def run_palette(tmux: Tmux, session: str, commands: list[PaletteCommand],
                selector: MenuSelector, delay: float = 0.0) -> Optional[PaletteResult]:
    """Pick a command and a target, then dispatch.

    Returns None when the user cancels at any step; nothing is sent then.
    """
    require_session(tmux, session)
    if not commands:
        raise ConfigError("no commands found in palette config")

    command = selector.choose_command(commands, session)
    if command is None:
        return None
    choice = selector.choose_target(command, session)
    if choice is None:
        return None

    if choice == "pane":
        panes = tmux.list_panes(f"{session}:{tmux.first_window(session)}")
        index = selector.choose_pane(panes)
        if index is None:
            return None
        spec: TargetSpec = PaneIndex(index)
    else:
        spec = parse_target(choice)

    count = dispatch(tmux, session, spec, command.prompt, delay=delay)
    return PaletteResult(command=command, target=spec, count=count)


# =============================================================================
# CLI
# =============================================================================

def count_arg(value: str) -> int:
    """argparse type for agent counts."""
    try:
        return validate_count(value)
    except ValidationError as e:
        raise argparse.ArgumentTypeError(str(e))


def positive_arg(value: str) -> int:
    count = count_arg(value)
    if count < 1:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got '{value}'")
    return count


def add_count_arguments(parser: argparse.ArgumentParser, defaults: tuple = (0, 0, 0)) -> None:
    for group, default in zip(GROUP_ORDER, defaults):
        parser.add_argument(group.value, nargs="?", type=count_arg, default=default,
                            help=f"Number of {group.display_name} agents. Default: {default}.")


def counts_from_args(args) -> dict:
    return {group: getattr(args, group.value) for group in GROUP_ORDER}


def finish_with_attach(args, tmux: Tmux, session: str) -> None:
    if not getattr(args, "no_attach", False):
        tmux.attach(session)


def cmd_create(args, config: Config, tmux: Tmux) -> None:
    """Create a session with N panes (no agents)."""
    manager = SessionManager(config, tmux)
    manager.ensure_session(args.session, args.panes)
    finish_with_attach(args, tmux, args.session)


def cmd_spawn(args, config: Config, tmux: Tmux) -> None:
    """Create session if needed and launch agents."""
    manager = SessionManager(config, tmux)
    manager.spawn_agents(args.session, counts_from_args(args))
    finish_with_attach(args, tmux, args.session)


def cmd_add(args, config: Config, tmux: Tmux) -> None:
    manager = SessionManager(config, tmux)
    manager.add_agents(args.session, counts_from_args(args))


def cmd_quick(args, config: Config, tmux: Tmux) -> None:
    manager = SessionManager(config, tmux)
    manager.quick_setup(args.project, counts_from_args(args))
    finish_with_attach(args, tmux, args.project)


def print_sessions(tmux: Tmux) -> None:
    sessions = tmux.list_sessions()
    if not sessions:
        print("No tmux sessions running")
        return
    for name in sessions:
        print(f"  {name}")


def cmd_attach(args, config: Config, tmux: Tmux) -> None:
    """Reattach to a session, offering to create it when missing."""
    if not args.session:
        print("Available sessions:")
        print_sessions(tmux)
        raise UsageError("session name required")

    validate_session_name(args.session)
    if not tmux.has_session(args.session):
        print(f"Session '{args.session}' does not exist.")
        print()
        print("Available sessions:")
        print_sessions(tmux)
        print()
        manager = SessionManager(config, tmux)
        if not manager.confirm(f"Create '{args.session}' with default settings?"):
            raise Aborted(f"session '{args.session}' was not created")
        manager.ensure_session(args.session, DEFAULT_PANES)

    finish_with_attach(args, tmux, args.session)


def cmd_list(args, config: Config, tmux: Tmux) -> None:
    """List sessions with their agent counts."""
    sessions = tmux.list_sessions()
    if args.format == "names":
        for name in sessions:
            print(name)
        return

    statuses = [session_status(tmux, name) for name in sessions]
    if args.format == "json":
        print(json.dumps([s.to_dict() for s in statuses], indent=2))
        return

    if not statuses:
        print("No tmux sessions running")
        return

    headers = ["SESSION", "PANES"] + [g.value.upper() for g in GROUP_ORDER]
    rows = []
    for status in statuses:
        row = [status.session, str(len(status.panes))]
        row += [str(status.counts[g]) for g in GROUP_ORDER]
        rows.append(row)

    widths = [max(len(h), *(len(r[i]) for r in rows)) for i, h in enumerate(headers)]
    print("  ".join(h.ljust(w) for h, w in zip(headers, widths)))
    for row in rows:
        print("  ".join(cell.ljust(w) for cell, w in zip(row, widths)))


def cmd_status(args, config: Config, tmux: Tmux) -> None:
    status = session_status(tmux, args.session)
    if args.format == "json":
        print(json.dumps(status.to_dict(), indent=2))
    else:
        print(format_status(status, config.project_dir(args.session)))


def cmd_view(args, config: Config, tmux: Tmux) -> None:
    SessionManager(config, tmux).view(args.session)
    finish_with_attach(args, tmux, args.session)


def cmd_zoom(args, config: Config, tmux: Tmux) -> None:
    pane = SessionManager(config, tmux).zoom(args.session, args.target)
    print(f"Zoomed pane {pane.index} ({pane.title})")
    finish_with_attach(args, tmux, args.session)


def send_target_from_args(args) -> TargetSpec:
    """Map send's flags to a target spec (--pane > group > -s > everything)."""
    if args.pane is not None:
        return PaneIndex(args.pane)
    if args.group:
        return GroupTarget(Group(args.group))
    if args.skip_first:
        return AllExceptFirst()
    return AllPanes()


def report_dispatch(config: Config, session: str, spec: TargetSpec, text: str, count: int) -> None:
    if count == 0:
        print("No matching panes found")
        sys.exit(EXIT_EMPTY)
    log_event(config, session, "SEND", f"target={describe_target(spec)} panes={count} "
                                       f"text={encode_prompt(text)[:80]}")
    print(f"Sent command to {count} pane(s) in session '{session}'")


def cmd_send(args, config: Config, tmux: Tmux) -> None:
    """Send text to panes."""
    text = " ".join(args.text)
    spec = send_target_from_args(args)
    delay = config.broadcast_delay if args.delay is None else args.delay
    count = dispatch(tmux, args.session, spec, text, delay=delay)
    report_dispatch(config, args.session, spec, text, count)


def cmd_broadcast(args, config: Config, tmux: Tmux) -> None:
    spec = parse_target(args.target)
    if isinstance(spec, (PaneIndex, AllPanes)):
        raise ValidationError("agent type must be cc, cod, gmi, or all")
    prompt = " ".join(args.prompt)
    delay = config.broadcast_delay if args.delay is None else args.delay
    count = dispatch(tmux, args.session, spec, prompt, delay=delay)
    report_dispatch(config, args.session, spec, prompt, count)


def cmd_interrupt(args, config: Config, tmux: Tmux) -> None:
    count = interrupt_agents(tmux, args.session)
    if count == 0:
        print("No matching panes found")
        sys.exit(EXIT_EMPTY)
    log_event(config, args.session, "INTERRUPT", f"panes={count}")
    print(f"Sent Ctrl+C to {count} agent pane(s)")


def cmd_restart(args, config: Config, tmux: Tmux) -> None:
    group = Group(args.group) if args.group else None
    count = SessionManager(config, tmux).restart_agents(args.session, group)
    if count == 0:
        print("No matching panes found")
        sys.exit(EXIT_EMPTY)
    print(f"Restarted {count} agent(s)")


def cmd_kill(args, config: Config, tmux: Tmux) -> None:
    SessionManager(config, tmux).kill_session(args.session, force=args.force)
    print(f"Killed session '{args.session}'")


def cmd_peek(args, config: Config, tmux: Tmux) -> None:
    """Print recent output of one pane."""
    require_session(tmux, args.session)
    panes = tmux.list_panes(f"{args.session}:{tmux.first_window(args.session)}")
    index = args.pane if args.pane is not None else (panes[0].index if panes else 0)
    pane = resolve_targets(PaneIndex(index), panes)[0]
    content = tmux.capture_pane(pane.pane_id, args.lines)
    if not content.strip():
        raise UsageError(f"no content captured from pane {index}")
    print(content, end="")


def cmd_save(args, config: Config, tmux: Tmux) -> None:
    output_dir = Path(args.output_dir).expanduser() if args.output_dir else config.log_dir / "outputs"
    save_dir, count = SessionManager(config, tmux).save_outputs(args.session, output_dir, args.lines)
    print(f"Saved {count} pane(s) to {save_dir}")


def cmd_deps(args, config: Config, tmux: Tmux) -> None:
    """Check that the agent CLIs are on PATH."""
    found, missing = check_agent_deps()
    if found:
        print(f"✓ Available: {' '.join(found)}")
    if missing:
        print(f"✗ Missing: {' '.join(missing)}")
        print()
        print("Install with:")
        for group in GROUP_ORDER:
            binary, install = AGENT_CLIS[group]
            if binary in missing:
                print(f"  {install}")
        sys.exit(EXIT_ERROR)


def cmd_palette(args, config: Config, tmux: Tmux) -> None:
    """Pick a palette command and send it."""
    session = args.session or tmux.current_session()
    if not session:
        raise UsageError("session required (or run from inside a tmux session)",
                         hint=f"usage: {PROG} palette <session> [--config FILE]")

    palette_path = Path(args.palette_config).expanduser() if args.palette_config else config.palette_path
    commands = load_palette(palette_path)
    delay = config.broadcast_delay if args.delay is None else args.delay
    result = run_palette(tmux, session, commands, make_selector(not args.no_fzf), delay=delay)
    if result is None:
        print("Cancelled")
        return
    report_dispatch(config, session, result.target, result.command.prompt, result.count)


def cmd_palette_init(args, config: Config, tmux: Tmux) -> None:
    path = Path(args.palette_config).expanduser() if args.palette_config else config.palette_path
    if path.exists() and not args.force:
        print(f"Config exists: {path}")
        if not prompt_yes_no("Overwrite?"):
            raise Aborted(f"{path} left unchanged")
    write_sample_palette(path)
    print(f"✓ Wrote sample palette: {path}")
    print()
    print("Edit this file to customize your commands, then run "
          f"'{PROG} palette <session>'.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=PROG,
        description=ROOT_HELP_DESCRIPTION,
        epilog=ROOT_HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument("--socket", default=None,
                        help="tmux socket name (tmux -L). Default: $NTM_TMUX_SOCKET or the "
                             "default tmux server. Useful for isolated test servers.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # create
    create_p = subparsers.add_parser("create", aliases=["cnt"], help="Create a session with N panes")
    create_p.add_argument("session", help="Session/project name. Must not contain ':' or '.'.")
    create_p.add_argument("panes", nargs="?", type=positive_arg, default=DEFAULT_PANES,
                          help=f"Number of panes. Default: {DEFAULT_PANES}.")
    create_p.add_argument("--no-attach", action="store_true",
                          help="Do not attach to the session afterwards.")
    create_p.set_defaults(func=cmd_create)

    # spawn
    spawn_p = subparsers.add_parser(
        "spawn",
        aliases=["sat"],
        help="Create a session and launch agents",
        description=SPAWN_HELP_DESCRIPTION,
        epilog=SPAWN_HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    spawn_p.add_argument("session", help="Session/project name. Must not contain ':' or '.'.")
    add_count_arguments(spawn_p)
    spawn_p.add_argument("--no-attach", action="store_true",
                         help="Do not attach to the session afterwards.")
    spawn_p.set_defaults(func=cmd_spawn)

    # add
    add_p = subparsers.add_parser(
        "add",
        aliases=["ant"],
        help="Add agents to an existing session",
        description=ADD_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    add_p.add_argument("session", help="Existing session name.")
    add_count_arguments(add_p)
    add_p.set_defaults(func=cmd_add)

    # quick
    quick_p = subparsers.add_parser("quick", aliases=["qps"],
                                    help="Create project dir, git init, and spawn agents")
    quick_p.add_argument("project", help="Project name (also the session name).")
    add_count_arguments(quick_p, defaults=(2, 2, 0))
    quick_p.add_argument("--no-attach", action="store_true",
                         help="Do not attach to the session afterwards.")
    quick_p.set_defaults(func=cmd_quick)

    # attach
    attach_p = subparsers.add_parser("attach", aliases=["rnt"],
                                     help="Reattach to a session (offers to create it)")
    attach_p.add_argument("session", nargs="?", help="Session name.")
    attach_p.add_argument("--no-attach", action="store_true", help=argparse.SUPPRESS)
    attach_p.set_defaults(func=cmd_attach)

    # list
    list_p = subparsers.add_parser("list", aliases=["lnt", "ls"], help="List sessions")
    list_p.add_argument("--format", choices=["table", "json", "names"], default="table",
                        help="Output format. Default: table.")
    list_p.set_defaults(func=cmd_list)

    # status
    status_p = subparsers.add_parser(
        "status",
        aliases=["snt"],
        help="Show panes and agent counts",
        description=STATUS_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    status_p.add_argument("session", help="Session name.")
    status_p.add_argument("--format", choices=["table", "json"], default="table",
                          help="Output format. Default: table.")
    status_p.set_defaults(func=cmd_status)

    # view
    view_p = subparsers.add_parser("view", aliases=["vnt"], help="Unzoom, tile all panes, and attach")
    view_p.add_argument("session", help="Session name.")
    view_p.add_argument("--no-attach", action="store_true",
                        help="Only re-tile; do not attach.")
    view_p.set_defaults(func=cmd_view)

    # zoom
    zoom_p = subparsers.add_parser("zoom", aliases=["znt"], help="Zoom a pane by index or agent type")
    zoom_p.add_argument("session", help="Session name.")
    zoom_p.add_argument("target", help="Pane index, or cc/cod/gmi for the first agent of that type.")
    zoom_p.add_argument("--no-attach", action="store_true",
                        help="Only zoom; do not attach.")
    zoom_p.set_defaults(func=cmd_zoom)

    # send
    send_p = subparsers.add_parser(
        "send",
        aliases=["sct"],
        help="Send text to panes",
        description=SEND_HELP_DESCRIPTION,
        epilog=SEND_HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    send_p.add_argument("-s", "--skip-first", action="store_true",
                        help="Skip the first (user) pane.")
    group_filter = send_p.add_mutually_exclusive_group()
    for group in GROUP_ORDER:
        group_filter.add_argument(f"--{group.value}", dest="group", action="store_const",
                                  const=group.value,
                                  help=f"Send only to {group.display_name} ({group.value}) panes.")
    group_filter.add_argument("--pane", type=count_arg, default=None,
                              help="Send only to the pane with this index in the first window.")
    send_p.add_argument("--delay", type=float, default=None,
                        help="Seconds to pause between panes. Default: $NTM_BROADCAST_DELAY or 0.")
    send_p.add_argument("session", help="Session name.")
    send_p.add_argument("text", nargs="+", help="Text to send; words are joined with spaces.")
    send_p.set_defaults(func=cmd_send)

    # broadcast
    bp_p = subparsers.add_parser(
        "broadcast",
        aliases=["bp"],
        help="Send a prompt to all agents of a type",
        description=BROADCAST_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    bp_p.add_argument("session", help="Session name.")
    bp_p.add_argument("target", help="cc, cod, gmi, or all.")
    bp_p.add_argument("prompt", nargs="+", help="Prompt text; words are joined with spaces.")
    bp_p.add_argument("--delay", type=float, default=None,
                      help="Seconds to pause between panes. Default: $NTM_BROADCAST_DELAY or 0.")
    bp_p.set_defaults(func=cmd_broadcast)

    # interrupt
    int_p = subparsers.add_parser(
        "interrupt",
        aliases=["int"],
        help="Send Ctrl-C to all agent panes",
        description=INTERRUPT_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    int_p.add_argument("session", help="Session name.")
    int_p.set_defaults(func=cmd_interrupt)

    # restart
    restart_p = subparsers.add_parser(
        "restart",
        help="Interrupt agents and relaunch them",
        description=RESTART_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    restart_filter = restart_p.add_mutually_exclusive_group()
    for group in GROUP_ORDER:
        restart_filter.add_argument(f"--{group.value}", dest="group", action="store_const",
                                    const=group.value,
                                    help=f"Restart only {group.display_name} agents.")
    restart_p.add_argument("session", help="Session name.")
    restart_p.set_defaults(func=cmd_restart)

    # kill
    kill_p = subparsers.add_parser(
        "kill",
        aliases=["knt"],
        help="Kill a session",
        description=KILL_HELP_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    kill_p.add_argument("-f", "--force", action="store_true", help="Skip the confirmation prompt.")
    kill_p.add_argument("session", help="Session name.")
    kill_p.set_defaults(func=cmd_kill)

    # peek
    peek_p = subparsers.add_parser("peek", help="Print recent output of a pane")
    peek_p.add_argument("session", help="Session name.")
    peek_p.add_argument("pane", nargs="?", type=count_arg, default=None,
                        help="Pane index in the first window. Default: the first pane.")
    peek_p.add_argument("-n", "--lines", type=count_arg, default=500,
                        help="Scrollback lines to capture. Default: 500.")
    peek_p.set_defaults(func=cmd_peek)

    # save
    save_p = subparsers.add_parser("save", aliases=["sso"], help="Save all pane outputs to files")
    save_p.add_argument("session", help="Session name.")
    save_p.add_argument("output_dir", nargs="?", default=None,
                        help="Parent directory. Default: <NTM_LOG_DIR>/outputs.")
    save_p.add_argument("-n", "--lines", type=count_arg, default=10000,
                        help="Scrollback lines per pane. Default: 10000.")
    save_p.set_defaults(func=cmd_save)

    # deps
    deps_p = subparsers.add_parser("deps", aliases=["cad"],
                                   help="Check that claude, codex and gemini are installed")
    deps_p.set_defaults(func=cmd_deps, needs_tmux=False)

    # palette
    palette_p = subparsers.add_parser(
        "palette",
        aliases=["ncp"],
        help="Send a canned prompt from the command palette",
        description=PALETTE_HELP_DESCRIPTION,
        epilog=PALETTE_HELP_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    palette_p.add_argument("session", nargs="?",
                           help="Session name. Default: the current tmux session.")
    palette_p.add_argument("--config", dest="palette_config", default=None,
                           help="Palette file. Default: $NTM_PALETTE_CONFIG or "
                                "~/.config/ntm/command_palette.md.")
    palette_p.add_argument("--no-fzf", action="store_true",
                           help="Use numbered menus even if fzf is installed.")
    palette_p.add_argument("--delay", type=float, default=None,
                           help="Seconds to pause between panes. Default: $NTM_BROADCAST_DELAY or 0.")
    palette_p.set_defaults(func=cmd_palette)

    # palette-init
    init_p = subparsers.add_parser("palette-init", help="Write a sample palette config")
    init_p.add_argument("--config", dest="palette_config", default=None,
                        help="Where to write. Default: the configured palette path.")
    init_p.add_argument("-f", "--force", action="store_true", help="Overwrite without asking.")
    init_p.set_defaults(func=cmd_palette_init, needs_tmux=False)

    return parser


def report_error(error: NtmError) -> None:
    print(f"{PROG}: error: {error}", file=sys.stderr)
    if error.hint:
        print(f"{PROG}: {error.hint}", file=sys.stderr)


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.from_env()
        if args.socket:
            config.tmux_socket = args.socket
        if getattr(args, "needs_tmux", True):
            ensure_tmux_available(config)
        tmux = Tmux(socket=config.tmux_socket, env=config.tmux_env())
        args.func(args, config, tmux)
    except NtmError as e:
        report_error(e)
        sys.exit(e.exit_code)


if __name__ == "__main__":
    main()
