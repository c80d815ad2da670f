"""
Unit Tests for the CSV Parser

Covers delimiter detection, quoting, line terminators and header cleanup.
"""

import unittest

from sheetcache.parser import detect_delimiter, normalize_header, parse, split_rows


class TestDetectDelimiter(unittest.TestCase):
    """Delimiter detection on the header line"""

    def test_comma(self):
        self.assertEqual(detect_delimiter("a,b,c\n1,2,3"), ",")

    def test_semicolon(self):
        self.assertEqual(detect_delimiter("a;b;c\n1,2,3,4,5"), ";")

    def test_tab(self):
        self.assertEqual(detect_delimiter("a\tb\tc\n1\t2\t3"), "\t")

    def test_tie_prefers_semicolon_then_comma(self):
        """Test deterministic tie-break order"""
        self.assertEqual(detect_delimiter("a;b,c"), ";")
        self.assertEqual(detect_delimiter("a,b\tc"), ",")

    def test_quoted_occurrences_ignored(self):
        """Test delimiters inside quotes are not counted"""
        self.assertEqual(detect_delimiter('"x,y,z";b;c'), ";")

    def test_no_candidate_defaults_to_comma(self):
        self.assertEqual(detect_delimiter("single\n1"), ",")

    def test_leading_blank_lines_skipped(self):
        self.assertEqual(detect_delimiter("\r\n\na;b\n1;2"), ";")


class TestSplitRows(unittest.TestCase):
    """Row splitting with quote handling"""

    def test_escaped_quote(self):
        rows = split_rows('a,"say ""hi"""\n', ",")
        self.assertEqual(rows, [["a", 'say "hi"']])

    def test_crlf_and_cr_terminators(self):
        rows = split_rows("a,b\r\n1,2\r3,4", ",")
        self.assertEqual(rows, [["a", "b"], ["1", "2"], ["3", "4"]])

    def test_trailing_newline_adds_no_row(self):
        self.assertEqual(len(split_rows("a,b\n1,2\n", ",")), 2)


class TestParse(unittest.TestCase):
    """Unit tests for parse()"""

    def test_returns_one_row_per_data_line(self):
        """Test N data rows produce N row objects in source order"""
        text = "Code,Name\n" + "".join(f"{i},Item {i}\n" for i in range(25))
        rows = parse(text)

        self.assertEqual(len(rows), 25)
        self.assertEqual(rows[0], {"Code": "0", "Name": "Item 0"})
        self.assertEqual(rows[-1], {"Code": "24", "Name": "Item 24"})
        for row in rows:
            self.assertEqual(set(row), {"Code", "Name"})

    def test_quoted_delimiter_and_newline_preserved(self):
        """Test a quoted field keeps its delimiter and embedded newline"""
        rows = parse('Text,Other\n"a,b\nc",x\n')

        self.assertEqual(rows, [{"Text": "a,b\nc", "Other": "x"}])

    def test_blank_rows_dropped(self):
        rows = parse("a,b\n\n  ,  \n1,\n,2\n")

        self.assertEqual(rows, [{"a": "1", "b": ""}, {"a": "", "b": "2"}])

    def test_leading_blank_lines_before_header(self):
        rows = parse("\n\nCode;Name\n1;A\n")

        self.assertEqual(rows, [{"Code": "1", "Name": "A"}])

    def test_header_cleanup(self):
        """Test BOM removal, trimming and whitespace collapsing of headers"""
        rows = parse("\ufeffCustomer ,  Total \t Amount \n C1 , 10 \n")

        self.assertEqual(rows, [{"Customer": "C1", "Total Amount": "10"}])

    def test_short_rows_padded(self):
        rows = parse("a,b,c\n1\n")

        self.assertEqual(rows, [{"a": "1", "b": "", "c": ""}])

    def test_semicolon_payload(self):
        rows = parse("Payer;Sales revenue\n100;1.234,50\n")

        self.assertEqual(rows, [{"Payer": "100", "Sales revenue": "1.234,50"}])

    def test_unclosed_quote_runs_to_end(self):
        """Test malformed quoting is closed implicitly at end of text"""
        rows = parse('h1,h2\n1,"abc\n2,3')

        self.assertEqual(rows, [{"h1": "1", "h2": "abc\n2,3"}])

    def test_empty_and_non_string_input(self):
        """Test parse never raises on bad input"""
        self.assertEqual(parse(""), [])
        self.assertEqual(parse(None), [])
        self.assertEqual(parse(b"a,b\n1,2"), [])
        self.assertEqual(parse(42), [])
        self.assertEqual(parse("\n \n"), [])

    def test_header_only(self):
        self.assertEqual(parse("a,b,c\n"), [])

    def test_normalize_header(self):
        self.assertEqual(normalize_header("\ufeff  Name   bill-to "), "Name bill-to")
        self.assertEqual(normalize_header(None), "")


if __name__ == "__main__":
    unittest.main()
