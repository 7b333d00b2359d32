"""Tests for XML to plain-tree conversion."""

import xml.etree.ElementTree as ET

import pytest

from pos_ingestion.fetchers.xml_tree import TEXT_KEY, local_name, parse_xml


class TestLocalName:
    @pytest.mark.parametrize(
        "tag,expected",
        [("{http://x}Body", "Body"), ("soap:Body", "Body"), ("Body", "Body")],
    )
    def test_strips_namespace(self, tag, expected):
        assert local_name(tag) == expected


class TestParseXml:
    def test_text_only_elements(self):
        assert parse_xml("<Bill><No>7</No><Net> 10.5 </Net></Bill>") == {"Bill": {"No": "7", "Net": "10.5"}}

    def test_repeated_tags_become_list(self):
        tree = parse_xml("<R><Line>a</Line><Line>b</Line><Line>c</Line></R>")
        assert tree == {"R": {"Line": ["a", "b", "c"]}}

    def test_attributes_merged(self):
        tree = parse_xml('<R><Bill no="1" status="paid"><Net>5</Net></Bill></R>')
        assert tree == {"R": {"Bill": {"no": "1", "status": "paid", "Net": "5"}}}

    def test_mixed_text_kept(self):
        tree = parse_xml('<R><Amount currency="INR">100</Amount></R>')
        assert tree == {"R": {"Amount": {"currency": "INR", TEXT_KEY: "100"}}}

    def test_namespaces_stripped(self):
        doc = (
            '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/">'
            '<s:Body><Result xmlns="http://vendor"><Row>1</Row></Result></s:Body></s:Envelope>'
        )
        assert parse_xml(doc) == {"Envelope": {"Body": {"Result": {"Row": "1"}}}}

    def test_empty_element(self):
        assert parse_xml("<R><Empty/></R>") == {"R": {"Empty": ""}}

    def test_malformed(self):
        with pytest.raises(ET.ParseError):
            parse_xml("<R>")
