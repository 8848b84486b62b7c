"""
Prompt templates for every reading type.

Each builder returns the role-tagged message list sent to the completion
endpoint. Daily and personal forecasts are localised (en, th, zh); unknown
languages fall back to English.
"""
from __future__ import annotations

import re
from datetime import date
from typing import Dict, List, Optional

SUPPORTED_LANGUAGES = ("en", "th", "zh")
DEFAULT_LANGUAGE = "en"
NOON = "noon"

DAILY_MAX_TOKENS = 400
PERSONAL_MAX_TOKENS = 200
SOLO_MAX_TOKENS = 1000
COMPATIBILITY_MAX_TOKENS = 1200
FOLLOWUP_MAX_TOKENS = 300

# Prefixes the model sometimes repeats before the translated pillar line.
PILLAR_PREFIX_PATTERNS = [
    re.compile(r"^Today's Bazi pillar is:\s*", re.IGNORECASE),
    re.compile(r"^เสา Bazi ของวันนี้คือ:\s*", re.IGNORECASE),
    re.compile(r"^今天的八字柱是[:：]\s*", re.IGNORECASE),
    re.compile(r"^Today's pillar is:\s*", re.IGNORECASE),
    re.compile(r"^Pillar:\s*", re.IGNORECASE),
]

DAILY_PROMPTS = {
    "en": {
        "system": "You are a precise expert in Chinese Four Pillars (Bazi) astrology. Your job is to write a daily Bazi forecast based on the Day Stem and Branch, using clear and insightful language grounded in classical metaphysics.",
        "user": """Today's Bazi pillar is: {pillar}

First, translate the pillar to English in this exact format (ONLY the pillar, no prefix): "Yang Fire (丙) over Monkey (戌)" (include Chinese characters)
Then write a concise daily Bazi forecast (4–6 sentences) for a general audience. Include:
- The energy of the day based on the Heavenly Stem and Earthly Branch
- How this day's energy may interact with common chart patterns
- Practical guidance or actions to take or avoid
- Optional: auspicious or inauspicious themes

End with a single-line affirmation or reflection on its own line, prefixed with "Shareable Summary:", like:
Shareable Summary: Let the steady flow of Water guide your words today.""",
    },
    "th": {
        "system": "คุณเป็นผู้เชี่ยวชาญที่แม่นยำในโหราศาสตร์จีนสี่เสา (Bazi) งานของคุณคือเขียนพยากรณ์ Bazi ประจำวันตามเสาและกิ่งของวัน โดยใช้ภาษาที่ชัดเจนและมีข้อมูลเชิงลึกที่อิงจากอภิปรัชญาแบบคลาสสิก",
        "user": """เสา Bazi ของวันนี้คือ: {pillar}

ก่อนอื่น ให้แปลเสาเป็นภาษาไทยในรูปแบบนี้ (เฉพาะเสาเท่านั้น ไม่มีคำนำ): "หยางไฟ (丙) เหนือ ลิง (戌)" (รวมอักษรจีน)
จากนั้นเขียนพยากรณ์ Bazi ประจำวันที่กระชับ (4-6 ประโยค) สำหรับผู้ชมทั่วไป รวม:
- พลังงานของวันตามเสาสวรรค์และกิ่งโลก
- พลังงานของวันนี้อาจมีปฏิสัมพันธ์กับรูปแบบแผนภูมิทั่วไปอย่างไร
- คำแนะนำหรือการกระทำที่ควรทำหรือหลีกเลี่ยง
- ตัวเลือก: ธีมที่มงคลหรือไม่มงคล

จบด้วยการยืนยันหรือการสะท้อนหนึ่งบรรทัดแยกต่างหาก ขึ้นต้นด้วย "สรุปสำหรับแชร์:" เช่น:
สรุปสำหรับแชร์: ให้กระแสของน้ำที่มั่นคงนำทางคำพูดของคุณในวันนี้""",
    },
    "zh": {
        "system": "您是中国四柱（八字）占星术的精确专家。您的工作是根据日干和日支编写每日八字预测，使用清晰而有洞察力的语言，基于古典形而上学。",
        "user": """今天的八字柱是: {pillar}

首先，将柱子翻译成中文，格式如下（仅柱子，无前缀）："阳火 (丙) 在 猴 (戌)" (包含中文字符)
然后为普通观众写一份简洁的每日八字预测（4-6句话）。包括：
- 基于天干地支的当日能量
- 这种日能量如何与常见图表模式相互作用
- 实用指导或应采取或避免的行动
- 可选：吉祥或不吉祥的主题

最后单独一行写一句肯定或反思，以"分享摘要:"开头，例如：
分享摘要: 让水的稳定流动引导你今天的话语。""",
    },
}

PERSONAL_PROMPTS = {
    "en": {
        "system": "You are an expert Bazi practitioner. Compare a person's chart to today's pillar and generate a brief personal daily forecast.",
        "user": """Today's Pillar: {pillar}
Birthday: {birth_date}{time_context}

What is the personal Bazi forecast for this individual?

Format as 2–3 bullet points using only plain text (no markdown, no asterisks, no bold formatting):

• What to be mindful of today
• Emotional or strategic tone
• Actionable advice (e.g. avoid conflict, focus on collaboration)

Use only bullet points (•) and plain text. Do not use any markdown formatting like **bold** or __italic__. Keep it concise and practical.

After a blank line, add one sentence on its own line starting with "Shareable Summary:" that captures the day for this person.""",
    },
    "th": {
        "system": "คุณเป็นผู้เชี่ยวชาญด้าน Bazi เปรียบเทียบแผนภูมิของบุคคลกับเสาของวันนี้และสร้างพยากรณ์ส่วนตัวประจำวันสั้นๆ",
        "user": """เสาของวันนี้: {pillar}
วันเกิด: {birth_date}{time_context}

พยากรณ์ Bazi ส่วนตัวสำหรับบุคคลนี้คืออะไร?

จัดรูปแบบเป็น 2-3 จุดโดยใช้ข้อความธรรมดาเท่านั้น (ไม่มี markdown, ไม่มีเครื่องหมายดอกจัน, ไม่มีการจัดรูปแบบตัวหนา):

• สิ่งที่ควรระมัดระวังในวันนี้
• โทนอารมณ์หรือกลยุทธ์
• คำแนะนำที่ปฏิบัติได้ (เช่น หลีกเลี่ยงความขัดแย้ง มุ่งเน้นการร่วมมือ)

ใช้เฉพาะจุดหัวข้อ (•) และข้อความธรรมดา อย่าใช้การจัดรูปแบบ markdown เช่น **ตัวหนา** หรือ __ตัวเอียง__ ให้กระชับและเป็นประโยชน์

เว้นหนึ่งบรรทัด แล้วเขียนหนึ่งประโยคในบรรทัดของตัวเองที่ขึ้นต้นด้วย "สรุปสำหรับแชร์:" ซึ่งสรุปวันนี้สำหรับบุคคลนี้""",
    },
    "zh": {
        "system": "您是八字专家。将个人的命盘与今日柱子进行比较，生成简短的个人每日预测。",
        "user": """今日柱子: {pillar}
生日: {birth_date}{time_context}

这个人的个人八字预测是什么？

格式为2-3个要点，仅使用纯文本（无markdown，无星号，无粗体格式）：

• 今天需要注意什么
• 情绪或策略基调
• 可行的建议（例如避免冲突，专注合作）

仅使用项目符号（•）和纯文本。不要使用任何markdown格式，如**粗体**或__斜体__。保持简洁实用。

空一行后，单独一行写一句以"分享摘要:"开头的话，概括此人今天的运势。""",
    },
}

SOLO_SYSTEM_PROMPT = "You are an expert in Chinese Four Pillars (Bazi) astrology, providing detailed and accurate readings based on birth dates. Your readings are comprehensive yet concise."

SOLO_USER_PROMPT = """Give me a chinese (Bazi) fortune reading for {birth_date} {time_context}. Include:
    1. The four pillars, one per line as "Year Pillar: ...", "Month Pillar: ...", "Day Pillar: ...", "Hour Pillar: ..."
    2. Key insights about:
       - Core self
       - Favorable and Unfavorable Elements
       - Luck Cycle & Destiny
       - Current Luck Pillar (运势 Yun Shi)
    3. A conclusion summarizing the main themes and potential life path with what to focus on and what to improve;
    4. A short, shareable summary (2-3 lines) highlighting the person's key strengths and potential, as the final paragraph. Make it personal and positive, starting with "A/An [adjective] individual..."

    Note: If no specific time is provided, use noon (12:00) as a reference point for the Hour Pillar."""

COMPATIBILITY_SYSTEM_PROMPT = "You are an expert in Chinese Four Pillars (Bazi) astrology, specializing in relationship compatibility analysis. Provide clear, structured compatibility insights based on two birth charts. Use grounded language and avoid vague generalizations."

COMPATIBILITY_USER_PROMPT = """Analyze the compatibility between two people using Chinese Bazi astrology:

You: {person1_birth_date} {person1_time_context}
Your Partner: {person2_birth_date} {person2_time_context}

Please provide a structured compatibility analysis including:

1. **Elemental Compatibility**: How your Five Elements (Wood, Fire, Earth, Metal, Water) support or weaken each other
2. **Pillar-by-Pillar Analysis**: Year, Month, Day, and Hour pillar interactions between you both
3. **Relationship Dynamics**: Your communication styles, emotional tendencies, and potential friction points
4. **Strengths & Challenges**: Key alignments vs areas needing effort in your relationship
5. **Practical Advice**: Specific, actionable suggestions to improve harmony or address imbalances

Format your response with clear section headings and bullet points where helpful. Use "you" and "your partner" throughout the analysis to make it more personal and relatable.

Include 2-3 key bullet points that would be perfect for sharing, starting with "•" and focusing on the most interesting compatibility insights. These should be specific to this couple's birth charts and focus on relationship dynamics, communication styles, and practical advice rather than technical elemental jargon.

At the end, include a concise, shareable summary (2–3 lines) starting with **"You and your partner show..."** or **"Your relationship demonstrates..."**. Make it personal and specific to the couple, avoiding generic statements. Keep the tone balanced and insightful.

Note: If exact time of birth is missing for either person, use **12:00 PM** as the default Hour Pillar reference."""

FOLLOWUP_SYSTEM_PROMPT = "You are a precise Bazi expert. Provide only the essential insights in bullet points, without any preamble or unnecessary context. Focus on actionable guidance."

FOLLOWUP_USER_PROMPT = """Based on the Bazi reading for {birth_date}, provide a concise analysis of the person's {aspect}.
    Format your response in 3-4 short bullet points, focusing ONLY on:
    - Key strengths/challenges in their {aspect}
    - Specific opportunities or areas to focus on
    - Practical advice or recommendations

    Keep each point brief and actionable. Do not include any introductory text or conclusions.
    Use ** for emphasis of important terms."""

_BIRTH_TIME_RE = re.compile(
    r"^(?P<hour>\d{1,2}):(?P<minute>\d{2})(?::\d{2})?\s*(?P<meridiem>[ap]\.?m\.?)?$",
    re.IGNORECASE,
)

_ASPECT_RE = re.compile(r"my\s+(\w+)(?:\s+life)?", re.IGNORECASE)

_INJECTION_BLOCKLIST = [
    "system instruction", "system prompt", "ignore all instructions",
    "repeat the text above", "your prompt", "ignore previous",
    "disregard all", "forget everything", "override", "bypass",
    "系统指令", "提示词", "你的设定", "忽略之前的", "重复上面的",
    "忽略以上", "无视规则", "跳过限制", "绕过", "告诉我你的",
    "输出你的", "显示你的", "打印你的",
]


def normalize_language(language: Optional[str]) -> str:
    language = (language or DEFAULT_LANGUAGE).strip().lower()
    return language if language in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE


def normalize_birth_time(birth_time: Optional[str]) -> str:
    """
    24-hour ``HH:MM`` for a given time, ``noon`` when the time is unknown.

    Accepts ``H:MM``, ``HH:MM`` or ``HH:MM:SS`` with an optional AM/PM suffix.
    Raises ValueError for anything else.
    """
    if not birth_time or not birth_time.strip():
        return NOON
    value = birth_time.strip()
    if value.lower() == NOON:
        return NOON
    match = _BIRTH_TIME_RE.match(value)
    if not match:
        raise ValueError(f"Invalid birth time: {birth_time!r}")

    hour, minute = int(match.group("hour")), int(match.group("minute"))
    meridiem = (match.group("meridiem") or "").replace(".", "").lower()
    if meridiem:
        if not 1 <= hour <= 12:
            raise ValueError(f"Invalid birth time: {birth_time!r}")
        hour = hour % 12 + (12 if meridiem == "pm" else 0)
    if hour > 23 or minute > 59:
        raise ValueError(f"Invalid birth time: {birth_time!r}")
    return f"{hour:02d}:{minute:02d}"


def format_birth_date(birth_date: date) -> str:
    """Render as ``15 May 1990``."""
    return f"{birth_date.day} {birth_date.strftime('%b %Y')}"


def time_context(birth_time: Optional[str]) -> str:
    if birth_time and birth_time.strip():
        return f"at {birth_time.strip()}"
    return "at an estimated time (noon)"


def is_safe_input(user_text: str) -> bool:
    """
    Reject questions that try to extract or override the prompt before they
    reach the completion endpoint.
    """
    lower_text = (user_text or "").lower()
    for word in _INJECTION_BLOCKLIST:
        if word.lower() in lower_text:
            return False
    return True


def extract_aspect(question: str) -> str:
    """``"How is my career?"`` -> ``"career"``."""
    match = _ASPECT_RE.search(question or "")
    return match.group(1) if match else ""


def _messages(system_prompt: str, user_prompt: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def build_daily_messages(pillar: str, language: str) -> List[Dict[str, str]]:
    prompts = DAILY_PROMPTS[normalize_language(language)]
    return _messages(prompts["system"], prompts["user"].format(pillar=pillar))


def build_personal_messages(
    pillar: str, birth_date: date, birth_time: Optional[str], language: str
) -> List[Dict[str, str]]:
    prompts = PERSONAL_PROMPTS[normalize_language(language)]
    timed = f" — {birth_time.strip()}" if birth_time and birth_time.strip() else ""
    user_prompt = prompts["user"].format(
        pillar=pillar,
        birth_date=birth_date.isoformat(),
        time_context=timed,
    )
    return _messages(prompts["system"], user_prompt)


def build_solo_messages(birth_date: date, birth_time: Optional[str]) -> List[Dict[str, str]]:
    user_prompt = SOLO_USER_PROMPT.format(
        birth_date=format_birth_date(birth_date),
        time_context=time_context(birth_time),
    )
    return _messages(SOLO_SYSTEM_PROMPT, user_prompt)


def build_compatibility_messages(
    person1_birth_date: date,
    person1_birth_time: Optional[str],
    person2_birth_date: date,
    person2_birth_time: Optional[str],
) -> List[Dict[str, str]]:
    user_prompt = COMPATIBILITY_USER_PROMPT.format(
        person1_birth_date=format_birth_date(person1_birth_date),
        person1_time_context=time_context(person1_birth_time),
        person2_birth_date=format_birth_date(person2_birth_date),
        person2_time_context=time_context(person2_birth_time),
    )
    return _messages(COMPATIBILITY_SYSTEM_PROMPT, user_prompt)


def build_followup_messages(birth_date: date, question: str) -> List[Dict[str, str]]:
    user_prompt = FOLLOWUP_USER_PROMPT.format(
        birth_date=format_birth_date(birth_date),
        aspect=extract_aspect(question),
    )
    return _messages(FOLLOWUP_SYSTEM_PROMPT, user_prompt)
