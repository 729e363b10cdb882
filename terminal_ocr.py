"""
Terminal OCR
------------
Reads terminal output, error messages and code from a screenshot.

The captured image is classified as dark or light, turned into four
preprocessed variants, and each variant is run through Tesseract with its own
settings. The candidates are scored with terminal-specific heuristics and the
winner is cleaned up with a set of fixes for common OCR misreadings.
"""

import os
import re
import shlex
import sys
import concurrent.futures
from collections import namedtuple
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import cv2
import numpy as np
import pytesseract
from PIL import Image


# Characters Tesseract may emit for the standard pass: alphanumerics plus the
# punctuation that shows up in paths, shell prompts and source code
TERMINAL_WHITELIST = (
    "abcdefghijklmnopqrstuvwxyz"
    "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "0123456789"
    "_-.:=/\\\"'(){}[]<>+*&^%$#@!~`|, ;?"
)

# Scoring weights
SCORE_STRONG_INDICATOR = 20
SCORE_TERMINAL_SYMBOL = 10
SCORE_WORDS_PER_POINT = 10
SCORE_GARBAGE_PENALTY = -20
SCORE_SHELL_PROMPT = 15

STRONG_INDICATOR_PATTERN = re.compile(
    r"/|(?<!\S)~(?=[/\s\]]|$)|error|fail|Traceback|File:|line \d|import",
    re.MULTILINE,
)
TERMINAL_SYMBOL_PATTERN = re.compile(r"[:>#$%=&~`]")
# Replacement character and box glyphs
GARBAGE_PATTERN = re.compile(r"[\ufffd\u25a0\u25a1]")
GARBAGE_TOKEN_PATTERN = re.compile(r"[\ufffd\u25a0\u25a1]+")
SHELL_PROMPT_PATTERN = re.compile(r"\[.*@.* .*\][$#%]")


class TerminalOCRError(Exception):
    """Base class for errors that abort an OCR run"""


class DependencyError(TerminalOCRError):
    """A required external tool is not installed"""


class CaptureError(TerminalOCRError):
    """The screenshot failed, was cancelled or is empty"""


class RecognitionError(TerminalOCRError):
    """Every OCR pass failed or produced no output"""


class NoCandidatesError(TerminalOCRError):
    """There is nothing to select a best result from"""


class BackgroundClass(Enum):
    DARK = "dark"
    LIGHT = "light"


class Variant(Enum):
    """Preprocessing variants, listed in tie-break priority order"""

    STANDARD = "standard"
    ENHANCED = "enhanced"
    CONTRAST = "contrast"
    BINARY = "binary"

    @property
    def priority(self):
        return list(Variant).index(self)

    @property
    def label(self):
        return f"terminal_{self.value}"


@dataclass(frozen=True)
class OCRConfig:
    """Settings for one OCR run.

    lang            Tesseract language (needs tesseract-ocr-<lang> installed)
    dpi             resolution hint passed to the enhanced, contrast and binary passes
    oem             OCR engine mode, 1 = neural nets LSTM only
    psm_standard    page segmentation mode, 6 = single uniform block of text
    psm_binary      page segmentation mode for the binary pass, 4 = single column
                    of text of variable sizes
    dark_luminance  mean luminance (0-100) below which the background is dark
    binary_threshold_dark / binary_threshold_light
                    threshold percentage for the binary variant; the dark value
                    applies to the already negated image
    ocr_timeout     seconds per Tesseract call, 0 disables the timeout
    capture_timeout seconds to wait for the region selection
    parallel        run the four variant pipelines on a thread pool
    debug_dir       when set, every processed variant is saved there
    """

    lang: str = "eng"
    dpi: int = 300
    oem: int = 1
    psm_standard: int = 6
    psm_binary: int = 4
    dark_luminance: float = 50.0
    binary_threshold_dark: int = 75
    binary_threshold_light: int = 50
    whitelist: str = TERMINAL_WHITELIST
    ocr_timeout: float = 30
    capture_timeout: float = 120
    parallel: bool = True
    debug_dir: Optional[str] = None


@dataclass(frozen=True, eq=False)
class CapturedImage:
    """Read-only RGB pixel buffer of the captured region"""

    pixels: np.ndarray

    def __post_init__(self):
        self.pixels.setflags(write=False)

    @classmethod
    def from_pil(cls, image):
        return cls(np.array(image.convert("RGB")))

    @property
    def width(self):
        return self.pixels.shape[1]

    @property
    def height(self):
        return self.pixels.shape[0]


@dataclass(eq=False)
class ImageVariant:
    variant: Variant
    operations: Tuple[tuple, ...]
    image: np.ndarray


@dataclass(frozen=True)
class RecognitionResult:
    variant: Variant
    text: str
    ok: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class ScoredResult:
    result: RecognitionResult
    score: int

    @property
    def variant(self):
        return self.result.variant

    @property
    def text(self):
        return self.result.text


@dataclass
class OCRRun:
    """Everything one pass over a captured image produced"""

    background: BackgroundClass
    results: List[RecognitionResult]
    scored: List[ScoredResult]
    best: ScoredResult
    text: str
    failed: List[RecognitionResult] = field(default_factory=list)


# --- Background classification ---

def mean_luminance(image):
    """Return the mean grayscale luminance of a captured image as 0-100"""
    pixels = np.array(image.pixels)
    if pixels.size == 0:
        raise ValueError("cannot measure the luminance of an empty image")

    if len(pixels.shape) == 3:
        gray = cv2.cvtColor(pixels, cv2.COLOR_RGB2GRAY)
    else:
        gray = pixels

    return float(np.mean(gray)) * 100.0 / 255.0


def detect_background(image, dark_luminance=50.0):
    """Classify the captured image as having a dark or light background"""
    print("Analyzing terminal background...")
    try:
        luminance = mean_luminance(image)
    except Exception as e:
        print(
            f"WARNING: Could not determine image brightness ({e}). "
            "Assuming dark background for processing.",
            file=sys.stderr,
        )
        return BackgroundClass.DARK

    if luminance < dark_luminance:
        background = BackgroundClass.DARK
    else:
        background = BackgroundClass.LIGHT

    print(f"{background.value.capitalize()} background detected (mean luminance {luminance:.1f}%)")
    return background


# --- Image operations ---
# Each operation takes a uint8 image array and returns a new one. Recipes are
# written as tuples of (operation name, *parameters) and applied in order.

def _stretch(img, low, high):
    if high <= low:
        return img.copy()
    stretched = (img.astype(np.float32) - low) * (255.0 / (high - low))
    return np.clip(stretched, 0, 255).astype(np.uint8)


def _negate(img):
    return cv2.bitwise_not(img)


def _grayscale(img):
    if len(img.shape) == 3:
        return cv2.cvtColor(img, cv2.COLOR_RGB2GRAY)
    return img.copy()


def _normalize(img):
    # Stretch the range, clipping 2% of the darkest and 1% of the brightest pixels
    low, high = np.percentile(img, (2, 99))
    return _stretch(img, float(low), float(high))


def _level(img, black_pct, white_pct):
    return _stretch(img, black_pct * 255.0 / 100.0, white_pct * 255.0 / 100.0)


def _thin(img, width, height):
    # Erode, then keep the darker of the eroded and input pixels
    kernel = np.ones((height, width), np.uint8)
    eroded = cv2.erode(img, kernel)
    return np.minimum(img, eroded)


def _open(img, width, height):
    kernel = np.ones((height, width), np.uint8)
    return cv2.morphologyEx(img, cv2.MORPH_OPEN, kernel)


def _threshold(img, pct):
    _, binary = cv2.threshold(img, pct * 255.0 / 100.0, 255, cv2.THRESH_BINARY)
    return binary


def _resize(img, pct):
    scale = pct / 100.0
    return cv2.resize(img, None, fx=scale, fy=scale, interpolation=cv2.INTER_CUBIC)


def _sharpen(img, sigma):
    # Unsharp mask
    gaussian = cv2.GaussianBlur(img, (0, 0), sigma)
    return cv2.addWeighted(img, 1.5, gaussian, -0.5, 0)


OPERATIONS = {
    "negate": _negate,
    "grayscale": _grayscale,
    "normalize": _normalize,
    "level": _level,
    "thin": _thin,
    "open": _open,
    "threshold": _threshold,
    "resize": _resize,
    "sharpen": _sharpen,
}


def apply_operations(img, operations):
    """Apply an ordered list of image operations"""
    result = img
    for op in operations:
        name, params = op[0], op[1:]
        if name not in OPERATIONS:
            raise ValueError(f"unknown image operation: {name}")
        result = OPERATIONS[name](result, *params)
    return result


def variant_recipes(background, config):
    """Return the (variant, operations) recipes for a background class"""
    # Dark backgrounds are negated first so text is always dark on light
    common = (("grayscale",),)
    if background is BackgroundClass.DARK:
        common = (("negate",),) + common
        threshold = config.binary_threshold_dark
    else:
        threshold = config.binary_threshold_light

    return [
        (Variant.STANDARD, common + (("normalize",), ("sharpen", 1.0))),
        (Variant.ENHANCED, common + (("level", 10, 90), ("thin", 1, 1), ("resize", 200), ("sharpen", 1.0))),
        (Variant.CONTRAST, common + (("level", 15, 85), ("sharpen", 1.5), ("resize", 150))),
        (Variant.BINARY, common + (("threshold", threshold), ("open", 1, 1))),
    ]


# --- Tesseract configuration ---

def tesseract_config(variant, config):
    """Build the Tesseract command-line configuration for one variant"""
    psm_mode = config.psm_standard
    custom_params = ["-c", "preserve_interword_spaces=1"]

    if variant is Variant.STANDARD:
        custom_params += ["-c", shlex.quote(f"tessedit_char_whitelist={config.whitelist}")]
    elif variant is Variant.ENHANCED:
        # Lower minimum line size tolerates thin or broken glyphs
        custom_params += ["--dpi", str(config.dpi), "-c", "textord_min_linesize=1"]
    elif variant is Variant.CONTRAST:
        custom_params += ["--dpi", str(config.dpi)]
    elif variant is Variant.BINARY:
        # Thresholded glyphs come out disjoint, a column layout copes better
        psm_mode = config.psm_binary
        custom_params += ["--dpi", str(config.dpi)]

    return f"-l {config.lang} --oem {config.oem} --psm {psm_mode} " + " ".join(custom_params)


# --- Scoring and selection ---

def score_text(text):
    """Score candidate text by how much it looks like terminal output"""
    score = 0

    # Paths, errors, tracebacks and imports are strong indicators
    if STRONG_INDICATOR_PATTERN.search(text):
        score += SCORE_STRONG_INDICATOR

    if TERMINAL_SYMBOL_PATTERN.search(text):
        score += SCORE_TERMINAL_SYMBOL

    # Bias toward complete transcriptions, tokens made only of garbage glyphs
    # are not words
    words = [w for w in text.split() if not GARBAGE_TOKEN_PATTERN.fullmatch(w)]
    score += len(words) // SCORE_WORDS_PER_POINT

    if GARBAGE_PATTERN.search(text):
        score += SCORE_GARBAGE_PENALTY

    if SHELL_PROMPT_PATTERN.search(text):
        score += SCORE_SHELL_PROMPT

    return score


def score_result(result):
    if not result.ok:
        return 0
    return score_text(result.text)


def score_results(results):
    """Score every successful recognition result, keeping their order"""
    scored = []
    print("--- Scores ---")
    for result in results:
        if not result.ok:
            continue
        scored.append(ScoredResult(result, score_result(result)))
        print(f"{result.variant.label}: {scored[-1].score}")
    print("--------------")
    return scored


def select_best(scored):
    """Pick the highest scoring result, earlier variants win ties"""
    if not scored:
        raise NoCandidatesError("Could not determine the best OCR result.")
    return min(scored, key=lambda s: (-s.score, s.variant.priority))


# --- Text normalization ---

TextRule = namedtuple("TextRule", "name pattern replacement")


def _rule(name, pattern, replacement, flags=0):
    return TextRule(name, re.compile(pattern, flags), replacement)


def _repeat(char):
    return lambda m: char * len(m.group(0))


NORMALIZATION_RULES = [
    _rule("llama", r"[l1]lama", "llama", re.IGNORECASE),
    _rule("capital-i-before-l", r"I+(?=l)", _repeat("l")),
    _rule("zero-oh", r"[0O]*(?:0O|O0)[0O]*", _repeat("0")),
    _rule("l-after-digit", r"(?<=[0-9])l+", _repeat("1")),
    _rule("dashes", r"-{2,}", "-"),
    _rule("whitespace", r"\s+", " "),
    _rule("label-colon", r"^([a-zA-Z0-9_]+)\s*:\s*", r"\1:"),
    _rule("right-guillemet", r"»+>", _repeat(">")),
    _rule("left-guillemet", r"«+<", _repeat("<")),
    _rule("import", r"\bimporc\b", "import"),
    _rule("class", r"\bciass\b", "class"),
    _rule("def", r"\bdeF\b", "def"),
    _rule("print", r"\bprin\b", "print"),
    # Identity rules, these keywords are already canonical
    _rule("func", r"\bfunc\b", "func"),
    _rule("let", r"\blet\b", "let"),
    _rule("var", r"\bvar\b", "var"),
    _rule("cats", r"\bcats\b", "cats"),
    _rule("pip", r"\bpip\b", "pip"),
    _rule("usr-lib", r"usr/1ib", "usr/lib"),
    _rule("etc-lib", r"/etc/1ib", "/etc/lib"),
    _rule("site-packages", r"site-packaqes", "site-packages"),
    _rule("site-packages-identity", r"site-packages", "site-packages"),
    _rule("bin-bash", r"bin/basn", "bin/bash"),
    _rule("home-dir", r"(?<!~)/home/[a-zA-Z0-9_]+/", "~/"),
    _rule("sudo", r"sudo[o0]+", "sudo"),
    _rule("equals", r"=[ =]+", "="),
    _rule("empty-brackets", r"\[ \]", "[]"),
    _rule("empty-braces", r"\{ \}", "{}"),
    _rule("empty-angles", r" < >", "<>"),
    _rule("space-before-colon", r" :", ":"),
    _rule("drive-letter", r"\bD:", "d:"),
    _rule("space-before-semicolon", r" ;", ";"),
    _rule("space-before-comma", r" ,", ","),
]


def apply_rule(rule, text):
    """Apply one normalization rule to every line of text"""
    return "\n".join(rule.pattern.sub(rule.replacement, line) for line in text.split("\n"))


def clean_text(text):
    """Fix systematic OCR misreadings in terminal/code text"""
    # label-colon anchors at line start, so the first line must already be stripped
    text = text.strip()
    for rule in NORMALIZATION_RULES:
        text = apply_rule(rule, text)
    return text.strip()


# --- Pipeline ---

class TerminalOCR:
    def __init__(self, config=None):
        self.config = config or OCRConfig()

    def build_variant(self, image, variant, operations):
        """Produce one processed image, or None if processing fails"""
        print(f"Processing: {variant.label}")
        try:
            processed = apply_operations(np.array(image.pixels), operations)

            if self.config.debug_dir:
                debug_path = os.path.join(self.config.debug_dir, f"{variant.label}.png")
                Image.fromarray(processed).save(debug_path)
                print(f"Saved debug image to: {debug_path}")
        except Exception as e:
            print(f"WARNING: Image processing failed for {variant.label}: {e}", file=sys.stderr)
            return None

        return ImageVariant(variant, tuple(operations), processed)

    def recognize(self, image_variant):
        """Run Tesseract on one processed variant"""
        variant = image_variant.variant
        config = tesseract_config(variant, self.config)
        print(f" Running Tesseract on {variant.label}")

        try:
            raw = pytesseract.image_to_string(
                Image.fromarray(image_variant.image),
                config=config,
                timeout=self.config.ocr_timeout,
            )
        except Exception as e:
            print(f" WARNING: Tesseract failed for {variant.label}: {e}", file=sys.stderr)
            return RecognitionResult(variant, "", ok=False, error=str(e))

        if not raw:
            print(f" WARNING: Tesseract output for {variant.label} is empty.", file=sys.stderr)
            return RecognitionResult(variant, "", ok=False, error="empty output")

        # Tesseract ends every page with a form feed
        return RecognitionResult(variant, raw.replace("\x0c", ""), ok=True)

    def run_variant(self, image, variant, operations):
        image_variant = self.build_variant(image, variant, operations)
        if image_variant is None:
            return RecognitionResult(variant, "", ok=False, error="image processing failed")
        return self.recognize(image_variant)

    def process(self, image):
        """Run the full pipeline on a captured image and return the OCR run"""
        background = detect_background(image, self.config.dark_luminance)

        print("Creating optimized image versions and running OCR...")
        recipes = variant_recipes(background, self.config)

        if self.config.parallel:
            # Variant pipelines share only the read-only capture
            with concurrent.futures.ThreadPoolExecutor(max_workers=len(recipes)) as executor:
                futures = [
                    executor.submit(self.run_variant, image, variant, operations)
                    for variant, operations in recipes
                ]
                results = [future.result() for future in futures]
        else:
            results = [self.run_variant(image, variant, operations) for variant, operations in recipes]

        failed = [r for r in results if not r.ok]
        if len(failed) == len(results):
            raise RecognitionError("All OCR passes failed or produced empty results.")

        print("Evaluating results for terminal text...")
        scored = score_results(results)
        best = select_best(scored)
        print(f"Selected best result: {best.variant.label} with score {best.score}")

        print("Applying terminal-specific post-processing...")
        text = clean_text(best.text)

        return OCRRun(background, results, scored, best, text, failed)
