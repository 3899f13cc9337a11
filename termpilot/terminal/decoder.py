"""Output decoder: turns raw terminal chunks into plain text and style spans."""

from __future__ import annotations

import re

from termpilot.models import ColorSpan, SpanPosition

# CSI (ESC [ params intermediates final) or OSC (ESC ] ... BEL/ST)
_ESCAPE_RE = re.compile(
    r"\x1b\[(?P<params>[0-?]*)[ -/]*(?P<final>[@-~])|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
)

ANSI_COLORS = {
    30: "black",
    31: "red",
    32: "green",
    33: "yellow",
    34: "blue",
    35: "magenta",
    36: "cyan",
    37: "white",
}

STYLE_CODES = {
    1: "bold",
    3: "italic",
    4: "underline",
}


def _as_text(raw: str | bytes) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def strip_ansi(text: str | bytes) -> str:
    """Remove escape sequences from text."""
    return _ESCAPE_RE.sub("", _as_text(text))


def _parse_sgr(params: str) -> tuple[str | None, str | None, list[str]]:
    fg: str | None = None
    bg: str | None = None
    styles: list[str] = []
    parts = params.split(";")
    index = 0
    while index < len(parts):
        part = parts[index]
        index += 1
        if not part.isdigit():
            continue
        code = int(part)
        if code in (38, 48):
            # extended color: 5;n or 2;r;g;b follows and is skipped
            mode = parts[index] if index < len(parts) else ""
            index += {"5": 2, "2": 4}.get(mode, 1)
        elif code in ANSI_COLORS:
            fg = ANSI_COLORS[code]
        elif 40 <= code <= 47:
            bg = ANSI_COLORS[code - 10]
        elif code in STYLE_CODES:
            styles.append(STYLE_CODES[code])
        # anything else (reset, bright colors, blink...) is accepted and ignored
    return fg, bg, styles


def decode(raw: str | bytes) -> tuple[str, list[ColorSpan]]:
    """
    Decode one output chunk.

    Returns the text with every escape sequence removed, and the styled runs
    that follow SGR sequences. Styling never carries over from a previous
    chunk, and runs after an SGR that sets nothing (e.g. a reset) are plain.

    Each SGR sequence replaces the current style rather than adding to it:
    ``ESC[1m ESC[31m ERR`` yields a red span without ``bold``. Programs that
    want both must send them in one sequence (``ESC[1;31m``). Extended
    colors (``38;5;n``, ``48;2;r;g;b``) are skipped along with their
    arguments.
    """
    source = _as_text(raw)
    pieces: list[str] = []
    spans: list[ColorSpan] = []
    offset = 0
    style: tuple[str | None, str | None, list[str]] | None = None

    def emit(run: str) -> None:
        nonlocal offset
        if not run:
            return
        if style is not None:
            fg, bg, styles = style
            spans.append(
                ColorSpan(
                    text=run,
                    fg=fg,
                    bg=bg,
                    styles=list(styles),
                    position=SpanPosition(start=offset, end=offset + len(run)),
                )
            )
        pieces.append(run)
        offset += len(run)

    cursor = 0
    for match in _ESCAPE_RE.finditer(source):
        emit(source[cursor:match.start()])
        cursor = match.end()
        if match.group("final") == "m":
            fg, bg, styles = _parse_sgr(match.group("params"))
            style = (fg, bg, styles) if (fg or bg or styles) else None
        else:
            style = None
    emit(source[cursor:])

    return "".join(pieces), spans


def parse_color_spans(text: str | bytes) -> list[ColorSpan]:
    """Extract only the style spans of a chunk."""
    return decode(text)[1]
