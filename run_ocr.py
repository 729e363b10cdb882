#!/usr/bin/env python3
"""
Terminal OCR Launcher
---------------------
Captures a screen region, reads the terminal/code text in it and copies the
result to the clipboard. Exits 0 when text was selected, 1 on any fatal error.
"""

import argparse
import os
import signal
import sys
import tempfile


def check_dependencies():
    """Check if required Python packages are installed"""
    try:
        import PIL
        import pytesseract
        import numpy
        import cv2
        return True
    except ImportError as e:
        print(f"Missing dependency: {e}", file=sys.stderr)
        print("Please install the required packages using:", file=sys.stderr)
        print("pip install -e .", file=sys.stderr)
        return False


def require_tools(need_capture, lang):
    """Raise DependencyError unless every external tool is available"""
    import desktop_tools
    from terminal_ocr import DependencyError

    missing = desktop_tools.check_dependencies(need_capture=need_capture)
    if missing:
        message = "Required commands not found:\n" + "\n".join(f" - {cmd}" for cmd in missing)
        hint = desktop_tools.install_hint(missing, lang)
        if hint:
            message += f"\nYou might be able to install them using: {hint}"
        raise DependencyError(message)

    installed, tesseract_message = desktop_tools.check_tesseract()
    if not installed:
        raise DependencyError(tesseract_message)
    print(tesseract_message)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Capture terminal or code text from the screen and copy it to the clipboard."
    )
    parser.add_argument("--image", help="read this image instead of capturing a screen region")
    parser.add_argument("--lang", default="eng", help="Tesseract language (default: eng)")
    parser.add_argument("--dpi", type=int, default=300, help="resolution hint for Tesseract (default: 300)")
    parser.add_argument(
        "--timeout", type=float, default=30,
        help="seconds allowed per OCR pass, 0 for no limit (default: 30)",
    )
    parser.add_argument(
        "--capture-timeout", type=float, default=120,
        help="seconds to wait for the region selection (default: 120)",
    )
    parser.add_argument("--sequential", action="store_true", help="run the OCR passes one after another")
    parser.add_argument("--debug-dir", help="save the processed image variants to this directory")
    parser.add_argument("--no-notify", action="store_true", help="don't show a desktop notification")
    return parser.parse_args(argv)


def _raise_exit(signum, frame):
    # Unwinds through the temporary directory context so it gets removed
    raise SystemExit(1)


def run(args):
    """Perform one capture-to-text cycle and return the normalized text"""
    import desktop_tools
    from terminal_ocr import OCRConfig, TerminalOCR

    config = OCRConfig(
        lang=args.lang,
        dpi=args.dpi,
        ocr_timeout=args.timeout,
        capture_timeout=args.capture_timeout,
        parallel=not args.sequential,
        debug_dir=args.debug_dir,
    )

    require_tools(need_capture=args.image is None, lang=config.lang)

    if config.debug_dir:
        os.makedirs(config.debug_dir, exist_ok=True)

    with tempfile.TemporaryDirectory(prefix="terminal-ocr-") as tmpdir:
        if args.image:
            captured = desktop_tools.load_image(args.image)
        else:
            screenshot = os.path.join(tmpdir, "screenshot.png")
            desktop_tools.capture_region(screenshot, timeout=config.capture_timeout)
            captured = desktop_tools.load_image(screenshot)

        print(f"Captured {captured.width}x{captured.height} image")
        return TerminalOCR(config).process(captured).text


def main(argv=None):
    """Main entry point for the terminal OCR tool"""
    args = parse_args(argv)

    if not check_dependencies():
        return 1

    import desktop_tools
    from terminal_ocr import TerminalOCRError

    previous = {}
    for signum in (signal.SIGHUP, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _raise_exit)

    try:
        text = run(args)
    except TerminalOCRError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("ERROR: Interrupted.", file=sys.stderr)
        return 1
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)

    copied = desktop_tools.copy_to_clipboard(text)

    # Display preview
    print("")
    print("===== TERMINAL OCR RESULT =====")
    print(text)
    print("===============================")
    print("")

    if not copied:
        print("Done! Clipboard copy failed, the text is shown above.")
        return 0

    if not args.no_notify:
        desktop_tools.notify("Terminal OCR Complete", "Text copied to clipboard")

    print("Done! Terminal text has been copied to clipboard.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
