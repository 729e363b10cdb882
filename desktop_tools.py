"""Wrappers around the desktop tools used for capture, clipboard and notifications"""

import os
import shutil
import subprocess
import sys

import pytesseract
from PIL import Image

from terminal_ocr import CaptureError, CapturedImage

# Command -> Debian/Ubuntu package providing it
REQUIRED_COMMANDS = {
    "gnome-screenshot": "gnome-screenshot",
    "tesseract": "tesseract-ocr",
    "xclip": "xclip",
}

NOTIFIERS = ("notify-send", "zenity", "xmessage")


def check_dependencies(need_capture=True):
    """Return the required commands that are not on PATH"""
    missing = []
    for cmd in REQUIRED_COMMANDS:
        if cmd == "gnome-screenshot" and not need_capture:
            continue
        if shutil.which(cmd) is None:
            missing.append(cmd)
    return missing


def install_hint(missing, lang="eng"):
    """Suggest an install command for the missing tools, if apt-get is available"""
    if not missing or shutil.which("apt-get") is None:
        return None
    packages = sorted({REQUIRED_COMMANDS.get(cmd, cmd) for cmd in missing})
    packages.append(f"tesseract-ocr-{lang}")
    return "sudo apt-get update && sudo apt-get install " + " ".join(packages)


def check_tesseract():
    """Check if tesseract is installed and its language data can be found"""
    try:
        version = pytesseract.get_tesseract_version()
        return True, f"Tesseract version {version} detected"
    except Exception as e:
        error_message = str(e)

        # Check if the error is related to missing data files
        if "tessdata" in error_message or "TESSDATA_PREFIX" in error_message:
            return False, "Tesseract language data files not found. Please install language data or set TESSDATA_PREFIX correctly."
        return False, f"Tesseract not properly installed or configured: {error_message}"


def capture_region(path, timeout=None):
    """Let the user select a screen region and save it to path"""
    print("Select area containing terminal/code text to capture...")
    try:
        proc = subprocess.run(
            ["gnome-screenshot", "-a", "-f", path],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        raise CaptureError("Screenshot timed out waiting for a selection.")
    except OSError as e:
        raise CaptureError(f"Screenshot failed: {e}")

    if proc.returncode != 0:
        raise CaptureError("Screenshot failed or cancelled.")

    # gnome-screenshot exits cleanly on some cancels without writing a file
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        raise CaptureError("Screenshot file is empty or creation failed.")

    return path


def load_image(path):
    """Load an image file as a CapturedImage"""
    if not os.path.exists(path) or os.path.getsize(path) == 0:
        raise CaptureError(f"Image file is empty or missing: {path}")
    try:
        with Image.open(path) as img:
            return CapturedImage.from_pil(img)
    except (OSError, ValueError) as e:
        raise CaptureError(f"Could not read image {path}: {e}")


def copy_to_clipboard(text):
    """Copy text to the X clipboard with xclip, returns False on failure"""
    print("Copying text to clipboard...")
    try:
        # xclip keeps running to own the selection, so its output is not captured
        proc = subprocess.run(
            ["xclip", "-selection", "clipboard"],
            input=text.encode("utf-8"),
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            timeout=10,
        )
    except (OSError, subprocess.SubprocessError) as e:
        print(f"WARNING: Failed to copy text to clipboard using xclip: {e}", file=sys.stderr)
        return False

    if proc.returncode != 0:
        print("WARNING: Failed to copy text to clipboard using xclip.", file=sys.stderr)
        return False
    return True


def notify(title, message):
    """Show a desktop notification with the first notifier that is installed"""
    notifier = next((cmd for cmd in NOTIFIERS if shutil.which(cmd)), None)
    if notifier is None:
        print("Note: Notification tools (notify-send, zenity, xmessage) not found. Cannot show visual notification.")
        return False

    try:
        if notifier == "notify-send":
            subprocess.run(
                ["notify-send", title, message, "--icon=edit-copy"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=10,
            )
        elif notifier == "zenity":
            # Dialogs close on their own, don't wait for them
            subprocess.Popen(
                ["zenity", "--info", f"--title={title}", f"--text={message}", "--timeout=2"],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        else:
            subprocess.Popen(
                ["xmessage", "-center", "-timeout", "2", message],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
    except (OSError, subprocess.SubprocessError) as e:
        print(f"WARNING: Could not show notification with {notifier}: {e}", file=sys.stderr)
        return False

    return True
