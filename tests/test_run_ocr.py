import os

import numpy as np
import pytest

import desktop_tools
import run_ocr
from terminal_ocr import CaptureError, CapturedImage, Variant


@pytest.fixture
def tools(monkeypatch):
    """Stub out every desktop tool and record what the launcher asked for"""
    record = {"clipboard": [], "notify": [], "captures": [], "loads": [], "need_capture": []}
    pixels = np.full((30, 80, 3), 20, dtype=np.uint8)
    pixels[10:20, 10:70] = 220

    def check_dependencies(need_capture=True):
        record["need_capture"].append(need_capture)
        return []

    def capture_region(path, timeout=None):
        record["captures"].append(path)
        return path

    def load_image(path):
        record["loads"].append(path)
        return CapturedImage(pixels.copy())

    def copy_to_clipboard(text):
        record["clipboard"].append(text)
        return True

    monkeypatch.setattr(desktop_tools, "check_dependencies", check_dependencies)
    monkeypatch.setattr(desktop_tools, "check_tesseract", lambda: (True, "Tesseract version 5.3.0 detected"))
    monkeypatch.setattr(desktop_tools, "capture_region", capture_region)
    monkeypatch.setattr(desktop_tools, "load_image", load_image)
    monkeypatch.setattr(desktop_tools, "copy_to_clipboard", copy_to_clipboard)
    monkeypatch.setattr(desktop_tools, "notify", lambda title, message: record["notify"].append(message) or True)
    return record


def test_all_passes_failing_exits_one(tools, fake_tesseract, capsys):
    fake_tesseract({})
    assert run_ocr.main(["--no-notify"]) == 1
    assert tools["clipboard"] == []
    assert "All OCR passes failed" in capsys.readouterr().err


def test_successful_run(tools, fake_tesseract, capsys):
    fake_tesseract({Variant.BINARY: "cd /usr/1ib/python3\n\x0c"})
    assert run_ocr.main([]) == 0
    assert tools["clipboard"] == ["cd /usr/lib/python3"]
    assert tools["notify"] == ["Text copied to clipboard"]
    out = capsys.readouterr().out
    assert "===== TERMINAL OCR RESULT =====\ncd /usr/lib/python3\n" in out


def test_screenshot_goes_to_a_removed_temp_dir(tools, fake_tesseract):
    fake_tesseract({Variant.STANDARD: "ls\n"})
    assert run_ocr.main(["--no-notify"]) == 0
    screenshot = tools["captures"][0]
    assert os.path.basename(screenshot) == "screenshot.png"
    assert tools["loads"] == [screenshot]
    assert not os.path.exists(os.path.dirname(screenshot))


def test_capture_cancelled_does_no_ocr(tools, fake_tesseract, monkeypatch, capsys):
    calls = fake_tesseract({Variant.STANDARD: "ls\n"})

    def cancelled(path, timeout=None):
        raise CaptureError("Screenshot failed or cancelled.")

    monkeypatch.setattr(desktop_tools, "capture_region", cancelled)
    assert run_ocr.main([]) == 1
    assert calls == []
    assert tools["clipboard"] == []
    assert "ERROR: Screenshot failed or cancelled." in capsys.readouterr().err


def test_missing_tools_exit_one(tools, fake_tesseract, monkeypatch, capsys):
    calls = fake_tesseract({Variant.STANDARD: "ls\n"})
    monkeypatch.setattr(desktop_tools, "check_dependencies", lambda need_capture=True: ["tesseract"])
    monkeypatch.setattr(desktop_tools, "install_hint", lambda missing, lang="eng": None)
    assert run_ocr.main([]) == 1
    assert calls == []
    assert tools["captures"] == []
    assert "Required commands not found" in capsys.readouterr().err


def test_broken_tesseract_exits_one(tools, monkeypatch, capsys):
    monkeypatch.setattr(desktop_tools, "check_tesseract", lambda: (False, "Tesseract not properly installed"))
    assert run_ocr.main([]) == 1
    assert "Tesseract not properly installed" in capsys.readouterr().err


def test_clipboard_failure_still_succeeds(tools, fake_tesseract, monkeypatch, capsys):
    fake_tesseract({Variant.STANDARD: "import os\n"})
    monkeypatch.setattr(desktop_tools, "copy_to_clipboard", lambda text: False)
    assert run_ocr.main([]) == 0
    assert tools["notify"] == []
    assert "import os" in capsys.readouterr().out


def test_image_argument_skips_capture(tools, fake_tesseract):
    fake_tesseract({Variant.STANDARD: "ls\n"})
    assert run_ocr.main(["--image", "terminal.png", "--sequential", "--no-notify"]) == 0
    assert tools["captures"] == []
    assert tools["loads"] == ["terminal.png"]
    assert tools["need_capture"] == [False]


def test_interrupt_removes_temp_dir(tools, monkeypatch, capsys):
    def interrupted(path, timeout=None):
        tools["captures"].append(path)
        raise KeyboardInterrupt

    monkeypatch.setattr(desktop_tools, "capture_region", interrupted)
    assert run_ocr.main([]) == 1
    assert not os.path.exists(os.path.dirname(tools["captures"][0]))
    assert "Interrupted" in capsys.readouterr().err


def test_termination_signal_removes_temp_dir(tools, monkeypatch):
    def terminated(path, timeout=None):
        tools["captures"].append(path)
        run_ocr._raise_exit(15, None)

    monkeypatch.setattr(desktop_tools, "capture_region", terminated)
    with pytest.raises(SystemExit) as exc_info:
        run_ocr.main([])
    assert exc_info.value.code == 1
    assert not os.path.exists(os.path.dirname(tools["captures"][0]))


def test_debug_dir_is_created(tools, fake_tesseract, tmp_path):
    fake_tesseract({Variant.STANDARD: "ls\n"})
    debug_dir = tmp_path / "variants"
    assert run_ocr.main(["--debug-dir", str(debug_dir), "--no-notify"]) == 0
    assert sorted(os.listdir(debug_dir)) == sorted(f"{v.label}.png" for v in Variant)
