"""Knowledge entries and the built-in Qala institute table.

Each entry groups alternate phrasings (``patterns``) that resolve to one
canned Sorani Kurdish ``response``.  Table order matters: the substring
fallback scan returns the first entry that matches, and entry 0 is the
general-information answer used for bare mentions of the institute name.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class KnowledgeEntry:
    """One canned answer and the phrasings that trigger it."""

    patterns: tuple[str, ...]
    response: str
    links: tuple[str, ...] = ()
    priority: float | None = None

    @property
    def canonical_pattern(self) -> str | None:
        """First pattern, used as the prefetch key."""
        return self.patterns[0] if self.patterns else None


_PHONES = "☎️07705009002\n☎️07702438095\n☎️07701925836"
_DIPLOMA = (
    "✅ بڕوانامەی دبلۆمی باوەڕپێکراوی وەزارەتی پەروەردەی هەرێمی کوردستان بەدەست دەهێنن."
)
_ADMISSION = (
    "پەیمانگەی قەڵا؛ بەبێ مەرجی تەمەن و نمرە سەرجەم دەرچووانی ٣ی ناوەندی(٩ی بنەڕەتی)و "
    "(١٠، ١١، ١٢)ی ئامادەیی وەردەگرێت و بڕوانامەی دبلۆمی باوەڕپێکراوی وەزارەتی پەروەردەی "
    "حکومەتی ھەرێمی کوردستانیان پێدەبەخشێت."
)
_OPENING_HOURS = (
    "⏰کاتژمێر ٩ی بەیانی تا ٧ی ئێوارەی هەموو ڕۆژێک دەرگای پەیمانگەکەمان کراوەیەو پێشوازیتان لێدەکەین"
)
_FACEBOOK = "https://www.facebook.com/share/1AH7TPx4T6/"


QALA_INSTITUTE: tuple[KnowledgeEntry, ...] = (
    # 0: general information
    KnowledgeEntry(
        patterns=(
            "پەیمانگای قەڵای ناحکومی",
            "پەیمانگەی قەڵای ناحکومی",
            "قەڵای ناحکومی",
            "پەیمانگەی قەڵا",
            "پەیمانگای قەڵا",
            "قەڵا",
            "پەیمانگە",
            "ناحکومی",
            "زانیاری قەڵا",
            "قەڵا چییە",
            "دەربارەی پەیمانگەی قەڵا",
            "دەربارەی قەڵا",
            "زانیاری پەیمانگە",
        ),
        response=(
            "✔️پەیمانگەی قـەڵای ناحکومی؛ یەکەم و باشترین و چالاکترین پەیمانگەی ئەهلییە لە "
            "سنووری ئیدارەی گەرمیانداو بەشەکانی:\n"
            "✅ کـارگێڕی و ژمێریاری\n"
            "✅ گازو پێتڕۆڵ(نـەوت)\n"
            "✅ کـۆمپیوتـەری هەیە.\n"
            "\n"
            "هەلی خوێندن بەدەستبێنن لە پەیمانگەی قـەڵای ناحکومی.\n"
            "\n"
            "بۆ ئەوەی ببنە یەکێک لە خوێندکارانی پەیمانگەکەمان، تەنھا بڕوانامەی 9ی "
            "بنەڕەتیتان پێویستە! هەرئێستا سەردانمان بکەن و ناوتان تۆمار بکەن بۆ ئەوەی "
            "کورسیەکی خوێندن حجز بکەن.\n"
            "\n"
            f"{_ADMISSION}\n"
            "√ کرێی خوێندن بە 6قیست وەردەگیرێت دوای داشکاندن.\n"
            "√ باڵەخانەی پەیمانگەی قەڵا مۆدێرن و سەردەمیانەیە.\n"
            "\n"
            f"{_OPENING_HOURS}⬇️\n"
            "\n"
            f"{_PHONES}\n"
            "🌍 پەیمانگەی قـەڵاـی ناحکومی\n"
            "کەلار ـ تەنیشت شاری پزیشکی گەرمیان"
        ),
        links=(_FACEBOOK,),
    ),
    # 1: departments
    KnowledgeEntry(
        patterns=(
            "بەشەکانی پەیمانگە",
            "بەشەکانی قەڵا",
            "خوێندن لە قەڵا",
            "خوێندنی قەڵا",
            "بەشەکان",
            "خوێندن چی هەیە",
            "خوێندنی چی هەیە",
            "بەشەکانی پەیمانگا",
            "بەشەکانی خوێندن",
            "دەتوانم چی بخوێنم",
        ),
        response=(
            "پەیمانگەی قـەڵای ناحکومی ئەم بەشانەی هەیە:\n"
            "✅ کـارگێڕی و ژمێریاری\n"
            "✅ گازو پێتڕۆڵ(نـەوت)\n"
            "✅ کـۆمپیوتـەر\n"
            "\n"
            "ناونووسی کراوەیە بۆ وەرگرتنی خوێندکاران! تەنها بڕوانامەی ٩ی بنەڕەتی پێویستە."
        ),
    ),
    # 2: contact
    KnowledgeEntry(
        patterns=(
            "پەیوەندی",
            "تەلەفۆن",
            "ژمارەی پەیوەندی",
            "ژمارەی مۆبایل قەڵا",
            "تەلەفۆنی قەڵا",
        ),
        response=(
            "بۆ پەیوەندیکردن بە پەیمانگەی قەڵای ناحکومی:\n"
            "\n"
            f"{_PHONES}\n"
            "\n"
            "🌍 ناونیشان: کەلار ـ تەنیشت شاری پزیشکی گەرمیان"
        ),
    ),
    # 3: opening hours
    KnowledgeEntry(
        patterns=("کاتی دەوام", "کاتژمێری دەوام", "کەی کراوەیە"),
        response=_OPENING_HOURS,
    ),
    # 4: tuition
    KnowledgeEntry(
        patterns=("کرێی خوێندن", "پارەی خوێندن", "نرخی خوێندن"),
        response=(
            "کرێی خوێندن لە پەیمانگەی قەڵای ناحکومی بە ٦ قیست وەردەگیرێت دوای داشکاندن.\n"
            "\n"
            "بۆ زانیاری زیاتر دەربارەی نرخەکان، تکایە پەیوەندی بکەن بە:\n"
            f"{_PHONES}"
        ),
    ),
    # 5: location
    KnowledgeEntry(
        patterns=("شوێن", "ناونیشان", "لە کوێیە", "ئەدرەس"),
        response="🌍 پەیمانگەی قـەڵاـی ناحکومی\nکەلار ـ تەنیشت شاری پزیشکی گەرمیان",
    ),
    # 6: computer science
    KnowledgeEntry(
        patterns=(
            "کۆمپیوتەر",
            "بەشی کۆمپیوتەر",
            "خوێندنی کۆمپیوتەر",
            "زانیاری بەشی کۆمپیوتەر",
            "ای تی",
            "IT",
            "کۆمپیوتەر چییە",
        ),
        response=(
            "بەشی کۆمپیوتەر لە پەیمانگەی قەڵای ناحکومی:\n"
            "\n"
            "✅ بەشی کۆمپیوتەر لە پەیمانگەی قەڵا دەرفەتێکی باشە بۆ فێربوونی تەکنەلۆجیای سەردەم.\n"
            "✅ خوێندکاران فێری پڕۆگرامینگ، نێتۆرک، وێبسایت، هاردوێر، و سۆفتوێر دەبن.\n"
            f"{_DIPLOMA}\n"
            "\n"
            "بۆ زانیاری زیاتر پەیوەندی بکەن بە:\n"
            "☎️07705009002\n"
        ),
    ),
    # 7: administration and accounting
    KnowledgeEntry(
        patterns=(
            "ژمێریاری",
            "کارگێری",
            "کارگێڕی",
            "بەشی کارگێڕی",
            "بەشی ژمێریاری",
            "خوێندنی کارگێڕی",
            "خوێندنی ژمێریاری",
            "ئیدارە",
        ),
        response=(
            "بەشی کارگێڕی و ژمێریاری لە پەیمانگەی قەڵای ناحکومی:\n"
            "\n"
            "✅ بەشی کارگێڕی و ژمێریاری دەرفەتێکی گرنگە بۆ فێربوونی بەڕێوەبردن و دارایی.\n"
            "✅ خوێندکاران فێری سیستەمی ژمێریاری، بەڕێوەبردنی دارایی، پلاندانانی کارگێڕی و "
            "چەندین بابەتی گرنگی تر دەبن.\n"
            f"{_DIPLOMA}\n"
            "\n"
            "بۆ زانیاری زیاتر پەیوەندی بکەن بە:\n"
            "☎️07705009002\n"
        ),
    ),
    # 8: gas and petroleum
    KnowledgeEntry(
        patterns=(
            "نەوت",
            "پیترۆڵ",
            "پێتڕۆڵ",
            "گاز",
            "بەشی نەوت",
            "بەشی گاز",
            "بەشی پێتڕۆڵ",
            "خوێندنی نەوت",
        ),
        response=(
            "بەشی گاز و پێتڕۆڵ (نەوت) لە پەیمانگەی قەڵای ناحکومی:\n"
            "\n"
            "✅ بەشی گاز و پێتڕۆڵ یەکێکە لە بەشە گرنگەکانی پەیمانگەی قەڵا.\n"
            "✅ خوێندکاران فێری تەکنەلۆجیای نەوت و گاز، دۆزینەوە، بەرهەمهێنان و چەندین بابەتی "
            "پەیوەندیدار دەبن.\n"
            f"{_DIPLOMA}\n"
            "\n"
            "بۆ زانیاری زیاتر پەیوەندی بکەن بە:\n"
            "☎️07705009002\n"
        ),
    ),
    # 9: admission requirements
    KnowledgeEntry(
        patterns=("مەرجەکانی وەرگرتن", "پێداویستیەکانی وەرگرتن", "چۆن وەردەگیرێم"),
        response=(
            "مەرجەکانی وەرگرتن لە پەیمانگەی قەڵای ناحکومی:\n"
            "\n"
            f"{_ADMISSION}\n"
            "\n"
            "تەنها بڕوانامەی ٩ی بنەڕەتیتان پێویستە!"
        ),
    ),
    # 10: social media
    KnowledgeEntry(
        patterns=("فەیسبووک", "سۆشیال میدیا", "لینک", "پەیج"),
        response=f"پەڕەی فەیسبووکی پەیمانگەی قەڵا:\n{_FACEBOOK}",
    ),
)

# Spellings of the institute name that fall back to the general entry.
INSTITUTE_NAME_VARIANTS: tuple[str, ...] = ("قەڵا", "قه\u200cڵا", "قلا", "قەلا")

CONTACT_ENTRY_INDEX = 2
