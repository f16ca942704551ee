"""Structural parser: raw specification text -> divisions, sections, subsections, pay items.

Each extractor is an independent regex pass. Conflicts are resolved first-writer-wins
by key and validated by a section-prefix check. Nothing here raises on malformed text;
unmatched patterns just produce fewer entities.
"""

import logging
import re
from typing import Dict, List, Optional, Set

from .models import Division, ParseResult, PayItem, Section, Subsection

logger = logging.getLogger(__name__)


PAGE_BREAK_MARKER = "---PAGE_BREAK---"

# Division definitions from the WVDOH Standard Specifications
DIVISION_DEFINITIONS: Dict[int, str] = {
    100: "GENERAL PROVISIONS",
    200: "EARTHWORK",
    300: "BASES",
    400: "ASPHALT PAVEMENTS",
    500: "RIGID PAVEMENT",
    600: "INCIDENTAL CONSTRUCTION",
    700: "MATERIALS",
    800: "CONSTRUCTION DETAILS",
    900: "TRAFFIC CONTROL DEVICES",
}

# "SECTION 624" followed by the title on the next line
SECTION_HEADER = re.compile(
    r"(?:^|\n)\s*SECTION\s+(\d{3})\s*\n\s*([A-Z][A-Z\s,&\-/()]+?)(?=\n)", re.M
)
# "601 STRUCTURAL CONCRETE" at the start of a line
SECTION_HEADER_ALT = re.compile(
    r"(?:^|\n)\s*(\d{3})\s+([A-Z][A-Z\s,&\-/()]{3,}?)(?=\n)", re.M
)

# "624.1-DESCRIPTION:" / "624.1 DESCRIPTION:"
SUBSECTION_L1 = re.compile(r"(?:^|\n)(\d{3}\.\d+)[\-\s]+([A-Z][A-Za-z\s,&\-/()]+?):", re.M)
# "625.6.1-Excavation:" (indented or not)
SUBSECTION_L2 = re.compile(
    r"(?:^|\n)\s*(\d{3}\.\d+\.\d+)[\-\s]+([A-Za-z][A-Za-z\s,&\-/()]+?):", re.M
)
# "625.6.1.1-Scope:"
SUBSECTION_L3 = re.compile(
    r"(?:^|\n)\s*(\d{3}\.\d+\.\d+\.\d+)[\-\s]+([A-Za-z][A-Za-z\s,&\-/()]+?):", re.M
)
SUBSECTION_PATTERNS = [(SUBSECTION_L1, 1), (SUBSECTION_L2, 2), (SUBSECTION_L3, 3)]

# Any subsection header, used to find where a subsection's content ends
NEXT_SUBSECTION = re.compile(r"\n\s*(\d{3}\.\d+(?:\.\d+)?(?:\.\d+)?)[\-\s]+[A-Za-z]")

# "623001-*         Shotcrete                       Square Yard"
PAY_ITEM = re.compile(
    r"^\s*(\d{6})-\*\s+(.+?)\s{2,}"
    r"(Square Yard|Linear Foot|Cubic Yard|Each|Lump Sum|Pound|Ton|Square Foot|Hour|Day|Mile|Gallon|.+?)"
    r"\s*$",
    re.M,
)
PAY_ITEMS_MARKER = re.compile(r"PAY\s+ITEMS?:", re.I)
PAY_ITEM_CONTEXT_SECTION = re.compile(r"(\d{3})\.\d+[\-\s]+")
PAY_ITEM_CONTEXT_CHARS = 500

CROSS_REFERENCE = re.compile(r"Section\s+(\d{3}(?:\.\d+)*)", re.I)


def clean_text(text: str) -> str:
    """Normalize line endings and blank runs; page breaks become explicit markers."""
    text = text.replace("\f", f"\n{PAGE_BREAK_MARKER}\n")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{4,}", "\n\n\n", text)
    return text.strip()


def page_at(text: str, offset: int) -> int:
    """1-based page number of a character offset in cleaned text."""
    return text.count(PAGE_BREAK_MARKER, 0, max(offset, 0)) + 1


def extract_divisions(text: str) -> List[Division]:
    """
    Detect which divisions are present in the document.

    A division is present when any standalone three-digit number starting with its
    leading digit occurs anywhere in the text. No boundaries are derived here.
    """
    divisions = []
    for number, title in DIVISION_DEFINITIONS.items():
        leading_digit = str(number)[0]
        if re.search(rf"\b{leading_digit}\d{{2}}\b", text):
            divisions.append(Division(number=number, title=title))

    return sorted(divisions, key=lambda d: d.number)


def _find_section_end(text: str, section_number: str, start_index: int) -> int:
    next_number = f"{int(section_number) + 1:03d}"
    pattern = re.compile(rf"\n\s*(?:SECTION\s+)?({next_number})\s+[A-Z]")
    match = pattern.search(text, start_index + 1)
    return match.start() if match else len(text)


def extract_section_text(text: str, section_number: str, start_index: int) -> str:
    """
    Slice a section's text from its header to the next section's header.

    The end is found by searching for the header of section number + 1, so trailing
    boilerplate before that header is folded into this section.
    """
    end_index = _find_section_end(text, section_number, start_index)
    return text[start_index:end_index].strip()


def extract_sections(text: str) -> List[Section]:
    """
    Extract sections using the strict header pattern first, then the loose one.

    Args:
        text: Cleaned document text

    Returns:
        Sections sorted by number, one per distinct section number
    """
    sections: List[Section] = []
    seen: Set[str] = set()

    for pattern in (SECTION_HEADER, SECTION_HEADER_ALT):
        for match in pattern.finditer(text):
            section_number = match.group(1)
            title = re.sub(r"\s+", " ", match.group(2).strip())

            if section_number in seen or len(title) < 3:
                continue
            # Table of contents lines end in page numbers
            if title.isdigit():
                continue

            start_index = match.start()
            end_index = _find_section_end(text, section_number, start_index)

            seen.add(section_number)
            sections.append(Section(
                section_number=section_number,
                title=title,
                division_number=int(section_number) // 100 * 100,
                full_text=extract_section_text(text, section_number, start_index),
                start_page=page_at(text, start_index),
                end_page=page_at(text, end_index),
            ))

    return sorted(sections, key=lambda s: int(s.section_number))


def extract_subsection_content(section_text: str, subsection_number: str, start_index: int) -> str:
    """Slice a subsection up to the next header at the same or a shallower level."""
    level = len(subsection_number.split("."))
    end_index = len(section_text)

    for match in NEXT_SUBSECTION.finditer(section_text, start_index + len(subsection_number)):
        next_number = match.group(1)
        if len(next_number.split(".")) <= level and next_number != subsection_number:
            end_index = match.start()
            break

    return section_text[start_index:end_index].strip()


def extract_cross_references(content: str) -> List[str]:
    """Section numbers referenced as "Section nnn[.n...]", in order of first appearance."""
    refs: List[str] = []
    for match in CROSS_REFERENCE.finditer(content):
        ref = match.group(1)
        if ref not in refs:
            refs.append(ref)
    return refs


def _subsection_sort_key(subsection: Subsection) -> tuple:
    return tuple(int(part) if part.isdigit() else 0 for part in subsection.subsection_number.split("."))


def extract_subsections(text: str, sections: List[Section]) -> List[Subsection]:
    """
    Extract three levels of subsections from each section's text.

    Args:
        text: Cleaned document text (unused beyond the sections' own windows)
        sections: Sections from extract_sections

    Returns:
        Subsections sorted by their dotted number
    """
    subsections: List[Subsection] = []
    seen: Set[str] = set()

    for section in sections:
        section_text = section.full_text
        prefix = section.section_number + "."

        for pattern, level in SUBSECTION_PATTERNS:
            for match in pattern.finditer(section_text):
                subsection_number = match.group(1)

                # Guards against bleed from a neighbouring section's text
                if not subsection_number.startswith(prefix):
                    continue
                if subsection_number in seen:
                    continue
                seen.add(subsection_number)

                content = extract_subsection_content(section_text, subsection_number, match.start())

                parent: Optional[str] = None
                if level > 1:
                    parent = ".".join(subsection_number.split(".")[:level])

                page_number = None
                if section.start_page is not None:
                    page_number = section.start_page + section_text.count(PAGE_BREAK_MARKER, 0, match.start())

                subsections.append(Subsection(
                    section_number=section.section_number,
                    subsection_number=subsection_number,
                    title=re.sub(r"\s+", " ", match.group(2).strip()),
                    content=content,
                    hierarchy_level=level,
                    parent_subsection=parent,
                    cross_references=extract_cross_references(content),
                    page_number=page_number,
                ))

    return sorted(subsections, key=_subsection_sort_key)


def _pay_item_from_match(match: re.Match, section_number: str) -> PayItem:
    return PayItem(
        item_number=match.group(1),
        description=match.group(2).strip(),
        unit=match.group(3).strip(),
        section_number=section_number,
    )


def extract_pay_items(text: str) -> List[PayItem]:
    """
    Extract pay items, preferring those listed under a "PAY ITEMS:" marker.

    Items after a marker take their section from the first subsection header in the
    preceding context window. A second pass over the whole text picks up the rest,
    with the section taken from the item code's first three digits.
    """
    pay_items: List[PayItem] = []
    seen: Set[str] = set()

    segments = PAY_ITEMS_MARKER.split(text)
    for i in range(1, len(segments)):
        context_before = segments[i - 1][-PAY_ITEM_CONTEXT_CHARS:]
        context_match = PAY_ITEM_CONTEXT_SECTION.search(context_before)
        context_section = context_match.group(1) if context_match else ""

        for match in PAY_ITEM.finditer(segments[i]):
            item_number = match.group(1)
            if item_number in seen:
                continue
            seen.add(item_number)
            pay_items.append(_pay_item_from_match(match, context_section or item_number[:3]))

    for match in PAY_ITEM.finditer(text):
        item_number = match.group(1)
        if item_number in seen:
            continue
        seen.add(item_number)
        pay_items.append(_pay_item_from_match(match, item_number[:3]))

    return sorted(pay_items, key=lambda p: p.item_number)


def link_pay_items_to_sections(sections: List[Section], pay_items: List[PayItem]) -> None:
    """Append each pay item code to its section's related_pay_items, once."""
    by_number = {section.section_number: section for section in sections}
    for pay_item in pay_items:
        section = by_number.get(pay_item.section_number)
        if section is None:
            continue
        if pay_item.item_number not in section.related_pay_items:
            section.related_pay_items.append(pay_item.item_number)


def parse_specifications(text: str) -> ParseResult:
    """
    Parse raw specification text into its structural hierarchy.

    Args:
        text: Raw extracted text, pages optionally separated by form feeds

    Returns:
        ParseResult with divisions, sections, subsections and pay items
    """
    logger.info("Parsing specification structure")
    cleaned = clean_text(text)

    divisions = extract_divisions(cleaned)
    logger.info(f"Found {len(divisions)} divisions")

    sections = extract_sections(cleaned)
    logger.info(f"Found {len(sections)} sections")

    subsections = extract_subsections(cleaned, sections)
    logger.info(f"Found {len(subsections)} subsections")

    pay_items = extract_pay_items(cleaned)
    logger.info(f"Found {len(pay_items)} pay items")

    link_pay_items_to_sections(sections, pay_items)
    section_numbers = {s.section_number for s in sections}
    orphaned = len([p for p in pay_items if p.section_number not in section_numbers])
    if orphaned:
        logger.warning(f"{orphaned} pay items have no matching section")

    return ParseResult(
        divisions=divisions,
        sections=sections,
        subsections=subsections,
        pay_items=pay_items,
    )
