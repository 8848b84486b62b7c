"""
Day pillar labels and the daily share card.

The pillar label for a date is produced by a replaceable strategy. Neither
strategy here is a full Four Pillars engine: ``LunarPillarStrategy`` reads the
day Gan-Zhi from the lunar calendar, ``SimplifiedPillarStrategy`` is the old
modulo placeholder kept for environments without calendar data.
"""
from __future__ import annotations

import textwrap
from datetime import date
from typing import Protocol

import svgwrite
from lunar_python import Solar

from text_utils import clean_text_for_card

EARTHLY_BRANCHES = ["Zi", "Chou", "Yin", "Mao", "Chen", "Si", "Wu", "Wei", "Shen", "You", "Xu", "Hai"]

STEM_CHARS = "甲乙丙丁戊己庚辛壬癸"
BRANCH_CHARS = "子丑寅卯辰巳午未申酉戌亥"

STEM_ELEMENTS = [
    "Yang Wood", "Yin Wood", "Yang Fire", "Yin Fire", "Yang Earth",
    "Yin Earth", "Yang Metal", "Yin Metal", "Yang Water", "Yin Water",
]

FALLBACK_PILLAR = "Yang Fire over Monkey"


def format_pillar(stem_index: int, branch_index: int) -> str:
    """``(2, 10)`` -> ``"Yang Fire (丙) over Xu (戌)"``."""
    stem = f"{STEM_ELEMENTS[stem_index]} ({STEM_CHARS[stem_index]})"
    branch = f"{EARTHLY_BRANCHES[branch_index]} ({BRANCH_CHARS[branch_index]})"
    return f"{stem} over {branch}"


class PillarStrategy(Protocol):
    def pillar_for(self, day: date) -> str: ...


class SimplifiedPillarStrategy:
    """Index stems by (year + day) % 10 and branches by (month + day) % 12."""

    def pillar_for(self, day: date) -> str:
        return format_pillar((day.year + day.day) % 10, (day.month + day.day) % 12)


class LunarPillarStrategy:
    """Day pillar from the lunar calendar, taken at noon of the given date."""

    def pillar_for(self, day: date) -> str:
        solar = Solar.fromYmdHms(day.year, day.month, day.day, 12, 0, 0)
        gan_zhi = solar.getLunar().getEightChar().getDay()
        return format_pillar(STEM_CHARS.index(gan_zhi[0]), BRANCH_CHARS.index(gan_zhi[1]))


def get_pillar_strategy(name: str) -> PillarStrategy:
    if name == "simplified":
        return SimplifiedPillarStrategy()
    if name == "lunar":
        return LunarPillarStrategy()
    raise ValueError(f"Unknown pillar strategy: {name}")


# Share card layout
CARD_LANDSCAPE = {
    "width": 1200, "height": 630, "title_size": 48, "date_size": 24, "pillar_size": 32,
    "body_size": 16, "line_length": 70, "line_height": 22, "max_lines": 9, "footer_y": 590,
}
CARD_PORTRAIT = {
    "width": 800, "height": 1200, "title_size": 56, "date_size": 28, "pillar_size": 36,
    "body_size": 18, "line_length": 45, "line_height": 26, "max_lines": 24, "footer_y": 1150,
}
CARD_FONT = (
    "Microsoft YaHei, PingFang SC, Hiragino Sans GB, WenQuanYi Micro Hei, "
    "Noto Sans CJK SC, Source Han Sans SC, Arial, sans-serif"
)
ACCENT = "#ff9800"


def wrap_card_text(text: str, line_length: int, max_lines: int) -> list:
    """Wrap paragraphs to card width, ending with an ellipsis when cut short."""
    lines = []
    for paragraph in clean_text_for_card(text).split("\n"):
        if not paragraph.strip():
            continue
        lines.extend(textwrap.wrap(paragraph, width=line_length) or [paragraph])
    if len(lines) > max_lines:
        lines = lines[:max_lines]
        lines[-1] = lines[-1].rstrip(" .,") + "…"
    return lines


def draw_share_card_svg(
    day: date,
    pillar: str,
    forecast: str,
    summary: str = "",
    portrait: bool = False,
) -> str:
    """
    Render the daily forecast as an SVG card.

    :param day: forecast date shown under the title
    :param pillar: translated day pillar
    :param forecast: forecast body, markdown allowed
    :param summary: optional highlighted line at the bottom
    :return: SVG document as a string
    """
    layout = CARD_PORTRAIT if portrait else CARD_LANDSCAPE
    width, height = layout["width"], layout["height"]
    dwg = svgwrite.Drawing(size=(width, height))

    gradient = dwg.linearGradient(start=(0, 0), end=(0, 1) if portrait else (1, 1), id="bg")
    gradient.add_stop_color(0, "#1a1a1a")
    gradient.add_stop_color(1, "#2d2d2d")
    dwg.defs.add(gradient)
    dwg.add(dwg.rect(insert=(0, 0), size=(width, height), fill="url(#bg)"))

    dwg.add(dwg.circle(center=(100, 100), r=50, fill="none", stroke=ACCENT, stroke_width=2, opacity=0.3))
    dwg.add(dwg.circle(center=(width - 100, height - 100), r=80, fill="none", stroke=ACCENT, stroke_width=2, opacity=0.2))

    content = dwg.g(font_family=CARD_FONT)
    center_x = width / 2
    content.add(dwg.text(
        "Daily Bazi Forecast", insert=(center_x, 120), text_anchor="middle",
        font_size=layout["title_size"], font_weight="bold", fill="#ffffff",
    ))
    content.add(dwg.text(
        day.strftime("%A, %B %d, %Y").replace(" 0", " "), insert=(center_x, 180),
        text_anchor="middle", font_size=layout["date_size"], fill=ACCENT,
    ))
    content.add(dwg.text(
        pillar, insert=(center_x, 240), text_anchor="middle",
        font_size=layout["pillar_size"], font_weight="bold", fill="#ffffff",
    ))

    y = 320
    for line in wrap_card_text(forecast, layout["line_length"], layout["max_lines"]):
        content.add(dwg.text(
            line, insert=(center_x, y), text_anchor="middle",
            font_size=layout["body_size"], fill="#e0e0e0",
        ))
        y += layout["line_height"]

    if summary:
        content.add(dwg.text(
            clean_text_for_card(summary), insert=(center_x, y + layout["line_height"]),
            text_anchor="middle", font_size=layout["body_size"], font_style="italic", fill=ACCENT,
        ))

    content.add(dwg.text(
        "BaziGPT.xyz", insert=(center_x, layout["footer_y"]), text_anchor="middle",
        font_size=layout["body_size"], fill="#888888",
    ))
    dwg.add(content)
    return dwg.tostring()
