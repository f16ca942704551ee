"""
Test suite for the structural parser.

Tests text normalization, section/subsection/pay item extraction, deduplication,
hierarchy invariants and pay item linking.

System role: Verification of specification structure recovery
"""

from specoracle.core.models import PayItem, Section
from specoracle.core.parse_structure import (
    PAGE_BREAK_MARKER,
    clean_text,
    extract_cross_references,
    extract_divisions,
    extract_pay_items,
    extract_section_text,
    extract_sections,
    extract_subsection_content,
    link_pay_items_to_sections,
    page_at,
    parse_specifications,
)


class TestCleanText:
    """Test suite for text normalization."""

    def test_should_replace_form_feeds_with_page_markers(self) -> None:
        """Test form feeds become explicit page break markers."""
        cleaned = clean_text("page one\fpage two")

        assert cleaned == f"page one\n{PAGE_BREAK_MARKER}\npage two"

    def test_should_normalize_line_endings(self) -> None:
        """Test CRLF and bare CR become LF."""
        assert clean_text("a\r\nb\rc") == "a\nb\nc"

    def test_should_collapse_long_blank_runs(self) -> None:
        """Test four or more newlines collapse to three."""
        assert clean_text("a\n\n\n\n\n\nb") == "a\n\n\nb"

    def test_should_keep_all_words(self) -> None:
        """Test normalization only touches whitespace."""
        text = "alpha  beta\n\n\n\n\ngamma\r\ndelta"

        assert clean_text(text).split() == text.split()

    def test_page_at_should_count_markers_before_offset(self) -> None:
        """Test page numbers are derived from preceding page markers."""
        cleaned = clean_text("one\ftwo\fthree")

        assert page_at(cleaned, 0) == 1
        assert page_at(cleaned, cleaned.index("two")) == 2
        assert page_at(cleaned, cleaned.index("three")) == 3


class TestExtractDivisions:
    """Test suite for division presence detection."""

    def test_should_detect_divisions_by_leading_digit(self, sample_spec_text: str) -> None:
        """Test a division is present when any matching three-digit number appears."""
        numbers = [d.number for d in extract_divisions(clean_text(sample_spec_text))]

        assert 600 in numbers
        assert 700 in numbers  # from the "Section 707.1" reference
        assert 200 not in numbers

    def test_should_return_titles_from_definitions(self) -> None:
        """Test detected divisions carry their curated titles."""
        divisions = extract_divisions("SECTION 203\nEXCAVATION AND EMBANKMENT\n")

        assert [(d.number, d.title) for d in divisions] == [(200, "EARTHWORK")]

    def test_should_ignore_digits_inside_longer_numbers(self) -> None:
        """Test six-digit pay item codes do not count as section numbers."""
        assert extract_divisions("item 401001 only") == []


class TestExtractSections:
    """Test suite for section extraction."""

    def test_should_extract_section_624_scenario(self) -> None:
        """Test the canonical header form yields one section with the right title."""
        text = clean_text(
            "SECTION 624\nSHOTCRETE\n\n624.1-DESCRIPTION: This work...\n\nSECTION 625\nCAISSONS\n"
        )

        sections = [s for s in extract_sections(text) if s.section_number == "624"]

        assert len(sections) == 1
        assert sections[0].title == "SHOTCRETE"
        assert sections[0].division_number == 600
        assert "SECTION 625" not in sections[0].full_text

    def test_should_deduplicate_across_header_patterns(self) -> None:
        """Test a section matched by both patterns is only kept once (first wins)."""
        text = clean_text("SECTION 601\nSTRUCTURAL CONCRETE\nbody\n601 STRUCTURAL CONCRETE\nmore\n")

        sections = extract_sections(text)

        assert [s.section_number for s in sections] == ["601"]
        assert sections[0].full_text.startswith("SECTION 601")

    def test_should_accept_loose_header_form(self) -> None:
        """Test "nnn TITLE" headers are recognized."""
        sections = extract_sections(clean_text("intro\n601 STRUCTURAL CONCRETE\nbody text\n"))

        assert [(s.section_number, s.title) for s in sections] == [("601", "STRUCTURAL CONCRETE")]

    def test_should_reject_short_titles(self) -> None:
        """Test titles under three characters are discarded."""
        sections = extract_sections(clean_text("SECTION 601\nAB\nbody\n"))

        assert sections == []

    def test_should_fold_trailing_text_into_previous_section(self) -> None:
        """Test the section end is the next section's header, so trailing text is over-captured."""
        text = clean_text("SECTION 601\nCONCRETE\nbody\nTRAILING BOILERPLATE\n\nSECTION 602\nCULVERTS\n")

        section = extract_sections(text)[0]

        assert "TRAILING BOILERPLATE" in section.full_text

    def test_full_text_should_be_the_section_slice(self) -> None:
        """Test full_text is the slice from the header to the next section number's header."""
        text = clean_text("SECTION 601\nCONCRETE\nbody\n\nSECTION 602\nCULVERTS\nmore\n")

        assert extract_section_text(text, "601", 0) == "SECTION 601\nCONCRETE\nbody"
        assert extract_sections(text)[0].full_text == "SECTION 601\nCONCRETE\nbody"

    def test_should_sort_numerically_and_track_pages(self) -> None:
        """Test sections are ordered by number and carry page hints."""
        text = clean_text("SECTION 625\nCAISSONS\nbody\fSECTION 624\nSHOTCRETE\nbody\n")

        sections = extract_sections(text)

        assert [s.section_number for s in sections] == ["624", "625"]
        assert sections[0].start_page == 2
        assert sections[1].start_page == 1


class TestExtractSubsections:
    """Test suite for subsection extraction."""

    def test_should_extract_all_levels(self, sample_spec_text: str) -> None:
        """Test level 1, 2 and 3 subsections are found with correct levels."""
        result = parse_specifications(sample_spec_text)
        levels = {s.subsection_number: s.hierarchy_level for s in result.subsections}

        assert levels["624.1"] == 1
        assert levels["624.6.1"] == 2
        assert levels["624.6.1.1"] == 3
        assert levels["625.1"] == 1

    def test_should_link_parents_by_truncation(self, sample_spec_text: str) -> None:
        """Test parents are the dotted number minus its last component."""
        result = parse_specifications(sample_spec_text)
        parents = {s.subsection_number: s.parent_subsection for s in result.subsections}

        assert parents["624.1"] is None
        assert parents["624.6.1"] == "624.6"
        assert parents["624.6.1.1"] == "624.6.1"

    def test_should_honor_hierarchy_invariant(self, sample_spec_text: str) -> None:
        """Test every subsection number extends its section number."""
        result = parse_specifications(sample_spec_text)

        for subsection in result.subsections:
            assert subsection.subsection_number.startswith(subsection.section_number + ".")
            assert len(subsection.subsection_number.split(".")) - 1 == subsection.hierarchy_level

    def test_content_should_include_deeper_levels(self, sample_spec_text: str) -> None:
        """Test a subsection runs through its nested children up to the next sibling."""
        result = parse_specifications(sample_spec_text)
        by_number = {s.subsection_number: s for s in result.subsections}

        content = by_number["624.6"].content
        assert "624.6.1-Excavation" in content
        assert "624.6.1.1-Scope" in content
        assert "624.7" not in content

    def test_content_should_stop_at_same_level(self) -> None:
        """Test content ends at the next header of the same level."""
        section_text = "624.1-DESCRIPTION:\nfirst\n624.2-MATERIALS:\nsecond"

        assert extract_subsection_content(section_text, "624.1", 0) == "624.1-DESCRIPTION:\nfirst"

    def test_should_collect_cross_references(self, sample_spec_text: str) -> None:
        """Test "Section nnn" references are recorded in order of appearance."""
        result = parse_specifications(sample_spec_text)
        by_number = {s.subsection_number: s for s in result.subsections}

        assert by_number["624.2"].cross_references == ["601", "707.1"]

    def test_cross_references_should_be_deduplicated(self) -> None:
        """Test repeated references are kept once."""
        refs = extract_cross_references("See Section 601. Also section 601 and Section 602.3.")

        assert refs == ["601", "602.3"]

    def test_should_reject_subsections_from_other_sections(self) -> None:
        """Test numbers not extending the owning section are dropped."""
        text = "SECTION 624\nSHOTCRETE\n\n624.1-DESCRIPTION:\nok\n\n630.1-DESCRIPTION:\nstray\n"

        result = parse_specifications(text)

        assert [s.subsection_number for s in result.subsections] == ["624.1"]


class TestPayItems:
    """Test suite for pay item extraction and linking."""

    def test_should_extract_items_after_marker(self, sample_spec_text: str) -> None:
        """Test items in a PAY ITEMS block are parsed with description and unit."""
        items = extract_pay_items(clean_text(sample_spec_text))

        assert [(p.item_number, p.description, p.unit, p.section_number) for p in items] == [
            ("624001", "Shotcrete", "Square Yard", "624"),
            ("624002", "Shotcrete Reinforcement", "Pound", "624"),
        ]

    def test_should_fall_back_to_item_prefix(self) -> None:
        """Test items outside a marker block take their section from the code."""
        items = extract_pay_items("636010-*    Traffic Drums    Each\n")

        assert items[0].section_number == "636"

    def test_should_deduplicate_items(self) -> None:
        """Test an item listed twice is extracted once."""
        text = "PAY ITEMS:\n624001-*    Shotcrete    Square Yard\n624001-*    Shotcrete    Square Yard\n"

        assert len(extract_pay_items(text)) == 1

    def test_linking_should_be_idempotent(self) -> None:
        """Test a pay item linked twice appears once in relatedPayItems."""
        section = Section(section_number="624", title="SHOTCRETE", division_number=600, full_text="")
        item = PayItem(item_number="624001", description="Shotcrete", unit="Square Yard", section_number="624")

        link_pay_items_to_sections([section], [item, item])
        link_pay_items_to_sections([section], [item])

        assert section.related_pay_items == ["624001"]

    def test_orphaned_items_should_not_fail_linking(self) -> None:
        """Test items without a matching section are tolerated."""
        section = Section(section_number="624", title="SHOTCRETE", division_number=600, full_text="")
        orphan = PayItem(item_number="999001", description="Unknown", unit="Each", section_number="999")

        link_pay_items_to_sections([section], [orphan])

        assert section.related_pay_items == []


class TestParseSpecifications:
    """Test suite for the full parse."""

    def test_should_be_deterministic(self, sample_spec_text: str) -> None:
        """Test parsing the same input twice gives identical results without duplicate keys."""
        first = parse_specifications(sample_spec_text)
        second = parse_specifications(sample_spec_text)

        assert first == second
        numbers = [s.subsection_number for s in first.subsections]
        assert len(numbers) == len(set(numbers))

    def test_should_link_pay_items(self, sample_spec_text: str) -> None:
        """Test the full parse links pay items to their section."""
        result = parse_specifications(sample_spec_text)
        section = next(s for s in result.sections if s.section_number == "624")

        assert section.related_pay_items == ["624001", "624002"]

    def test_should_not_raise_on_garbage(self) -> None:
        """Test malformed input yields an empty result rather than an error."""
        result = parse_specifications("\x00\x01 ??? \f\f random words")

        assert result.sections == []
        assert result.subsections == []
        assert result.pay_items == []
