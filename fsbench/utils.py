# utils.py

import datetime
import os
import re
import stat
import subprocess

import psutil


def shell(cmd, check=True, capture=False, **kw):
    """
    Run an external command, echoing it first.
    Returns the CompletedProcess; raises CalledProcessError when check is set.
    """
    cmd = [str(c) for c in cmd]
    print("[RUN]", *cmd)
    if capture:
        kw.setdefault("stdout", subprocess.PIPE)
        kw.setdefault("stderr", subprocess.STDOUT)
        kw.setdefault("text", True)
    return subprocess.run(cmd, check=check, **kw)


def log_message(log_file, message):
    print(message)
    if log_file is None:
        return
    with open(log_file, "a") as f:
        f.write(message + "\n")


def current_timestamp():
    """
    Return the current timestamp string for filenames or logs.
    Format: YYYYMMDD_HHMMSS
    """
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def safe_filename(name):
    """
    Sanitize a string to be safe for filesystem filenames.
    Removes or replaces problematic characters.
    """
    return re.sub(r'[^\w\-_.]', '_', name)


def format_duration(seconds):
    """Render seconds the way the shell `time` keyword does: 1m30.500s."""
    minutes, rest = divmod(float(seconds), 60)
    return f"{int(minutes)}m{rest:.3f}s"


def same_device(a, b):
    """True when both paths name the same node, following /dev/disk/by-* links."""
    return os.path.realpath(a) == os.path.realpath(b)


def is_block_device(path):
    try:
        return stat.S_ISBLK(os.stat(path).st_mode)
    except OSError:
        return False


# ──────────────────────────────────────────────────────────────────────
def mountpoints_of(source):
    """All mount points where `source` or one of its partitions is attached.
    A zfs pool matches itself and its datasets."""
    if not source.startswith("/dev/"):
        suffix = r"(/.*)?$"
    elif source[-1:].isdigit():
        # nvme0n1, loop1 -> nvme0n1p1, loop1p1 (never loop10)
        suffix = r"(p\d+)?$"
    else:
        suffix = r"(\d+)?$"
    pattern = re.compile(re.escape(source) + suffix)
    return [p.mountpoint for p in psutil.disk_partitions(all=True)
            if pattern.match(p.device)]


def is_mounted(path):
    target = os.path.realpath(path)
    return any(os.path.realpath(p.mountpoint) == target
               for p in psutil.disk_partitions(all=True))
