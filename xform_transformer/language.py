"""
Language Labels
===============

Turns the raw language labels XForm authors write into language
descriptors. Accepted label shapes:

- ``"French (fr)"``  description plus tag
- ``"fr"``           bare ISO 639-1 code
- ``"French"``       English language name

Anything else is kept verbatim as both tag and description. Directionality
is read from a sample of text written in the language; when the sample has
no strongly directional characters the tag decides.
"""

import re
import unicodedata
from dataclasses import dataclass

LTR = "ltr"
RTL = "rtl"

_LABEL_WITH_TAG = re.compile(r"^\s*(.*?)\s*\(\s*([A-Za-z]{2,3}(?:-[A-Za-z0-9]{2,8})*)\s*\)\s*$")
_TAG = re.compile(r"^[A-Za-z]{2,3}(?:-[A-Za-z0-9]{2,8})*$")

# ISO 639-1 codes with their English names
LANGUAGE_NAMES = {
    "af": "Afrikaans", "am": "Amharic", "ar": "Arabic", "az": "Azerbaijani",
    "be": "Belarusian", "bg": "Bulgarian", "bn": "Bengali", "bs": "Bosnian",
    "ca": "Catalan", "cs": "Czech", "cy": "Welsh", "da": "Danish",
    "de": "German", "dv": "Divehi", "el": "Greek", "en": "English",
    "es": "Spanish", "et": "Estonian", "eu": "Basque", "fa": "Persian",
    "ff": "Fulah", "fi": "Finnish", "fr": "French", "ga": "Irish",
    "gl": "Galician", "gu": "Gujarati", "ha": "Hausa", "he": "Hebrew",
    "hi": "Hindi", "hr": "Croatian", "ht": "Haitian", "hu": "Hungarian",
    "hy": "Armenian", "id": "Indonesian", "ig": "Igbo", "is": "Icelandic",
    "it": "Italian", "ja": "Japanese", "jv": "Javanese", "ka": "Georgian",
    "kk": "Kazakh", "km": "Khmer", "kn": "Kannada", "ko": "Korean",
    "ku": "Kurdish", "ky": "Kirghiz", "lg": "Ganda", "ln": "Lingala",
    "lo": "Lao", "lt": "Lithuanian", "lv": "Latvian", "mg": "Malagasy",
    "mk": "Macedonian", "ml": "Malayalam", "mn": "Mongolian", "mr": "Marathi",
    "ms": "Malay", "mt": "Maltese", "my": "Burmese", "ne": "Nepali",
    "nl": "Dutch", "no": "Norwegian", "ny": "Chichewa", "om": "Oromo",
    "pa": "Panjabi", "pl": "Polish", "ps": "Pashto", "pt": "Portuguese",
    "qu": "Quechua", "ro": "Romanian", "ru": "Russian", "rw": "Kinyarwanda",
    "sd": "Sindhi", "si": "Sinhala", "sk": "Slovak", "sl": "Slovenian",
    "sn": "Shona", "so": "Somali", "sq": "Albanian", "sr": "Serbian",
    "st": "Southern Sotho", "sv": "Swedish", "sw": "Swahili", "ta": "Tamil",
    "te": "Telugu", "tg": "Tajik", "th": "Thai", "ti": "Tigrinya",
    "tl": "Tagalog", "tn": "Tswana", "tr": "Turkish", "ug": "Uighur",
    "uk": "Ukrainian", "ur": "Urdu", "uz": "Uzbek", "vi": "Vietnamese",
    "wo": "Wolof", "xh": "Xhosa", "yi": "Yiddish", "yo": "Yoruba",
    "zh": "Chinese", "zu": "Zulu",
}

_CODES_BY_NAME = {name.lower(): code for code, name in LANGUAGE_NAMES.items()}

RTL_LANGUAGES = {"ar", "dv", "fa", "he", "ps", "sd", "ug", "ur", "yi"}


@dataclass(frozen=True)
class Language:
    """Parsed language label."""

    tag: str
    description: str
    directionality: str
    source_language: str


def _primary_subtag(tag: str) -> str:
    return tag.split("-", 1)[0].lower()


def text_directionality(sample: str, tag: str = "") -> str:
    """
    Directionality of a text sample.

    Counts strong right-to-left (R, AL) against strong left-to-right (L)
    characters; a tie falls back to the language tag.
    """
    rtl = ltr = 0
    for char in sample or "":
        bidi = unicodedata.bidirectional(char)
        if bidi in ("R", "AL"):
            rtl += 1
        elif bidi == "L":
            ltr += 1
    if rtl != ltr:
        return RTL if rtl > ltr else LTR
    return RTL if _primary_subtag(tag) in RTL_LANGUAGES else LTR


def parse_language(label: str, sample: str = "") -> Language:
    """
    Parse a raw language label.

    Args:
        label: Label as written in the XForm
        sample: Text written in that language, for directionality

    Returns:
        Language descriptor; ``source_language`` is the raw label
    """
    source = label or ""
    stripped = source.strip()

    match = _LABEL_WITH_TAG.match(stripped)
    if match:
        description, tag = match.group(1), match.group(2)
        if not description:
            description = LANGUAGE_NAMES.get(_primary_subtag(tag), tag)
    elif _TAG.match(stripped) and _primary_subtag(stripped) in LANGUAGE_NAMES:
        tag = stripped
        description = LANGUAGE_NAMES[_primary_subtag(stripped)]
    elif stripped.lower() in _CODES_BY_NAME:
        tag = _CODES_BY_NAME[stripped.lower()]
        description = stripped
    else:
        tag = stripped
        description = stripped

    return Language(
        tag=tag,
        description=description,
        directionality=text_directionality(sample, tag),
        source_language=source,
    )
