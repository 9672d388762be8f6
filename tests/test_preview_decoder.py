"""
Tests for decoding log lines into preview field trees.
"""

import json
import logging

import pytest

from conftest import ehcp_payload, sring_line
from preview_decoder import FieldDecoder, LineStatus, NodeStatus, decode_line
from preview_parser import parse_json


def make_rule(document):
    result = parse_json(json.dumps([document]))
    assert result.success, result.errors
    return result.previews[0]


def line_rule(fields, **extra):
    """Rule over the whole line as text."""
    document = {'name': 'T', 'regex': r'^(.*)$', 'fields': fields}
    document.update(extra)
    return make_rule(document)


@pytest.mark.integration
class TestEhcpFrame:
    """Hex payload carried in an SRING line, checksum located by the size field."""

    def test_fields(self, ehcp_rule):
        result = decode_line(make_rule(ehcp_rule), sring_line(ehcp_payload()))

        assert result.status == LineStatus.OK
        ehcp = result.find('ehcp')
        assert ehcp.text == '41 bytes'
        assert [child.label for child in ehcp.children] == ['header', 'size', 'checksum']
        assert result.find('header').text == 'EHCP'
        assert result.find('size').text == '41'
        assert result.find('checksum').text == '0xd774'
        assert all(child.status == NodeStatus.OK for child in ehcp.children)

    def test_values_bound_by_path(self, ehcp_rule):
        result = decode_line(make_rule(ehcp_rule), sring_line(ehcp_payload()))
        assert result.values['ehcp.size'] == 41
        assert result.values['ehcp.checksum'] == 0xD774

    def test_checksum_out_of_range_is_scoped(self, ehcp_rule):
        """A size one larger pushes the checksum past the buffer end."""
        result = decode_line(make_rule(ehcp_rule), sring_line(ehcp_payload("02A")))

        assert result.status == LineStatus.OK
        assert result.find('size').text == '42'
        checksum = result.find('checksum')
        assert checksum.status == NodeStatus.ERROR
        assert checksum.text == 'Decode error: Width 4 exceeds remaining 3 bytes.'
        assert checksum.diagnostic.path == 'ehcp.checksum'
        assert checksum.diagnostic.offset == 38
        assert checksum.diagnostic.width == 4
        assert checksum.diagnostic.preview == '774'

    def test_no_match(self, ehcp_rule):
        result = decode_line(make_rule(ehcp_rule), 'SRING: 2,48,00')
        assert result.status == LineStatus.NO_MATCH
        assert result.message == 'No match for selected preview.'
        assert result.nodes == []


class TestBufferSlicing:
    """Cursor, offset and width handling."""

    def test_sequential_fields(self):
        rule = line_rule([{'name': 'a', 'width': 2}, {'name': 'b', 'width': 3},
                          {'name': 'rest'}])
        result = decode_line(rule, 'abcdefgh')
        assert [n.text for n in result.nodes] == ['ab', 'cde', 'fgh']

    def test_width_zero_is_rest(self):
        rule = line_rule([{'name': 'a', 'width': 1}, {'name': 'b', 'width': 0}])
        result = decode_line(rule, 'xyz')
        assert result.nodes[1].text == 'yz'

    def test_offset_relative_to_cursor(self):
        rule = line_rule([{'name': 'a', 'width': 1}, {'name': 'b', 'offset': 2, 'width': 1}])
        result = decode_line(rule, 'abcdef')
        assert result.nodes[1].text == 'd'

    def test_width_error_keeps_cursor(self):
        """A failed slice leaves the cursor where it was for the next sibling."""
        rule = line_rule([{'name': 'a', 'width': 10}, {'name': 'b', 'width': 2}])
        result = decode_line(rule, 'abc')

        a, b = result.nodes
        assert a.status == NodeStatus.ERROR
        assert a.diagnostic.offset == 0
        assert a.diagnostic.width == 10
        assert a.diagnostic.preview == 'abc'
        assert 'Reason: Width 10 exceeds remaining 3 bytes.' in a.tooltip
        assert b.status == NodeStatus.OK
        assert b.text == 'ab'

    def test_offset_past_end(self):
        rule = line_rule([{'name': 'a', 'offset': 5, 'width': 1}])
        node = decode_line(rule, 'abc').nodes[0]
        assert node.status == NodeStatus.ERROR
        assert 'Offset exceeds buffer' in node.text

    def test_negative_width(self):
        rule = line_rule([{'name': 'a', 'width': '1-2'}])
        node = decode_line(rule, 'abc').nodes[0]
        assert node.status == NodeStatus.ERROR
        assert node.text == 'Decode error: Negative width (-1).'

    def test_malformed_expression_is_error(self):
        rule = line_rule([{'name': 'a', 'width': '1+'}])
        node = decode_line(rule, 'abc').nodes[0]
        assert node.status == NodeStatus.ERROR
        assert 'Expression ends with an operator.' in node.text

    def test_rule_start_offset(self):
        rule = line_rule([{'name': 'a', 'width': 3}], offset=3)
        assert decode_line(rule, 'XYZabc').nodes[0].text == 'abc'

    def test_rule_start_offset_outside_buffer(self):
        rule = line_rule([{'name': 'a'}], offset=10)
        result = decode_line(rule, 'abc')
        assert result.status == LineStatus.ERROR
        assert result.nodes == []


class TestValueBinding:
    """Numeric fields feed later offset/width expressions."""

    def test_length_prefixed(self):
        rule = line_rule([
            {'name': 'len', 'width': 1, 'type': 'string', 'format': 'dec'},
            {'name': 'body', 'width': '{len}'},
            {'name': 'tail'},
        ])
        result = decode_line(rule, '3abcZZ')
        assert [n.text for n in result.nodes] == ['3', 'abc', 'ZZ']
        assert result.values == {'len': 3}

    def test_forward_reference_is_skipped(self):
        rule = line_rule([
            {'name': 'a', 'offset': '{b}', 'width': 1},
            {'name': 'b', 'width': 1, 'type': 'string', 'format': 'dec'},
        ])
        a, b = decode_line(rule, '7x').nodes
        assert a.status == NodeStatus.SKIPPED
        assert a.text == 'skipped: missing b'
        assert a.diagnostic.path == 'a'
        assert b.status == NodeStatus.OK
        assert b.text == '7'

    def test_string_fields_are_not_bound(self):
        rule = line_rule([{'name': 'a', 'width': 1}, {'name': 'b', 'width': '{a}'}])
        result = decode_line(rule, '1xyz')
        assert result.nodes[1].status == NodeStatus.SKIPPED
        assert 'a' not in result.values


class TestCaptures:
    def test_named_and_indexed(self):
        rule = make_rule({
            'name': 'C', 'regex': r'^(?<dev>\w+)=(\w+)$',
            'fields': [
                {'name': 'dev', 'source': 'capture', 'capture': 'dev'},
                {'name': 'val', 'source': 'capture', 'capture': 2},
            ],
        })
        result = decode_line(rule, 'pump=on')
        assert [n.text for n in result.nodes] == ['pump', 'on']

    def test_capture_not_participating(self):
        rule = make_rule({
            'name': 'C', 'regex': r'^(?<a>x)?(?<b>y)$',
            'fields': [
                {'name': 'a', 'source': 'capture', 'capture': 'a'},
                {'name': 'b', 'source': 'capture', 'capture': 'b'},
            ],
        })
        a, b = decode_line(rule, 'y').nodes
        assert a.status == NodeStatus.ERROR
        assert a.text == 'Decode error: Capture not set.'
        assert a.diagnostic.source == "capture 'a'"
        assert b.text == 'y'

    def test_unknown_group(self):
        rule = make_rule({
            'name': 'C', 'regex': r'^(y)$',
            'fields': [{'name': 'z', 'source': 'capture', 'capture': 'nope'}],
        })
        assert decode_line(rule, 'y').nodes[0].status == NodeStatus.ERROR

    def test_buffer_capture_not_set(self):
        rule = make_rule({
            'name': 'C', 'regex': r'^(?<a>x)?y$', 'bufferCapture': 'a',
            'fields': [{'name': 'all'}],
        })
        result = decode_line(rule, 'y')
        assert result.status == LineStatus.ERROR
        assert result.message == "Buffer capture 'a' not set."


class TestNumericFormats:
    def test_enum_and_flags(self):
        rule = make_rule({
            'name': 'S', 'regex': r'^ST (?<m>\d+) (?<f>\d+)$',
            'fields': [
                {'name': 'mode', 'source': 'capture', 'capture': 'm',
                 'type': 'string', 'format': 'enum', 'enumMap': {'2': 'busy'}},
                {'name': 'flags', 'source': 'capture', 'capture': 'f',
                 'type': 'string', 'format': 'flags',
                 'flagMap': {'1': 'A', '2': 'B', '4': 'C'}},
            ],
        })
        mode, flags = decode_line(rule, 'ST 2 5').nodes
        assert mode.text == 'busy'
        assert flags.text == 'A, C'

    def test_enum_fallback_is_decimal(self):
        rule = make_rule({
            'name': 'S', 'regex': r'^V=(?<v>\d+)$',
            'fields': [{'name': 'v', 'source': 'capture', 'capture': 'v',
                        'type': 'string', 'format': 'enum', 'enumMap': {'2': 'busy'}}],
        })
        assert decode_line(rule, 'V=7').nodes[0].text == '7'

    def test_little_endian_hex(self):
        rule = make_rule({
            'name': 'H', 'regex': r'^H (?<v>[0-9A-F]+)$',
            'fields': [{'name': 'v', 'source': 'capture', 'capture': 'v',
                        'type': 'hexString', 'endianness': 'little', 'format': 'hex'}],
        })
        assert decode_line(rule, 'H 0102').nodes[0].text == '0x201'
        assert decode_line(rule, 'H 102').nodes[0].text == '0x102'

    def test_base64_buffer(self):
        rule = make_rule({
            'name': 'B', 'regex': r'^B64 (?<d>\S+)$', 'bufferCapture': 'd',
            'type': 'base64',
            'fields': [
                {'name': 'a', 'width': 1, 'format': 'dec'},
                {'name': 'b', 'width': 2, 'endianness': 'little', 'format': 'hex'},
            ],
        })
        result = decode_line(rule, 'B64 AQID')
        assert [n.text for n in result.nodes] == ['1', '0x302']

    def test_invalid_number_is_error(self):
        rule = line_rule([{'name': 'n', 'type': 'string', 'format': 'dec'}])
        node = decode_line(rule, 'EHCP').nodes[0]
        assert node.status == NodeStatus.ERROR
        assert 'Invalid number' in node.text

    def test_invalid_hex_buffer_is_line_error(self):
        rule = line_rule([{'name': 'n'}], type='hexString')
        result = decode_line(rule, 'XYZ0')
        assert result.status == LineStatus.ERROR
        assert result.message.startswith('Decode error:')


class TestBitfields:
    def bitfield_rule(self, subfields, **extra):
        field = {'name': 'reg', 'source': 'capture', 'capture': 'v',
                 'type': 'string', 'format': 'bitfield', 'bitfieldMap': subfields}
        field.update(extra)
        return make_rule({'name': 'B', 'regex': r'^B (?<v>\S+)$', 'fields': [field]})

    def test_msb_first(self):
        rule = self.bitfield_rule([
            {'name': 'hi', 'width': 4, 'format': 'hex'},
            {'name': 'lo', 'width': 4, 'format': 'dec'},
        ])
        result = decode_line(rule, 'B 0xA5')
        reg = result.find('reg')
        assert reg.text == '165'
        assert [(c.label, c.text) for c in reg.children] == [('hi', '0xa'), ('lo', '5')]
        assert result.values['reg.hi'] == 10
        assert result.values['reg.lo'] == 5

    def test_default_subfield_width_is_one_bit(self):
        rule = self.bitfield_rule([
            {'name': 'a'}, {'name': 'b', 'width': 2, 'format': 'bin'},
        ])
        reg = decode_line(rule, 'B 0x5').find('reg')
        assert [c.text for c in reg.children] == ['1', '1']

    def test_explicit_total_width(self):
        rule = self.bitfield_rule([
            {'name': 'top', 'width': 1}, {'name': 'next', 'width': 1},
        ], width=8)
        reg = decode_line(rule, 'B 0x80').find('reg')
        assert [c.text for c in reg.children] == ['1', '0']

    def test_overrun_reads_zero(self):
        rule = self.bitfield_rule([
            {'name': 'a', 'width': 4}, {'name': 'b', 'width': 4},
        ], width=4)
        reg = decode_line(rule, 'B 0xF').find('reg')
        assert [c.text for c in reg.children] == ['15', '0']

    def test_subfield_enum(self):
        rule = self.bitfield_rule([
            {'name': 'mode', 'width': 2, 'format': 'enum',
             'enumMap': {'0': 'off', '3': 'auto'}},
            {'name': 'pad', 'width': 6},
        ])
        reg = decode_line(rule, 'B 0xC0').find('reg')
        assert reg.find('mode').text == 'auto'

    def test_missing_map_yields_empty_children(self):
        rule = make_rule({
            'name': 'B', 'regex': r'^B (?<v>\S+)$',
            'fields': [{'name': 'reg', 'source': 'capture', 'capture': 'v',
                        'type': 'string', 'format': 'bitfield'}],
        })
        reg = decode_line(rule, 'B 7').find('reg')
        assert reg.status == NodeStatus.OK
        assert reg.children == []


class TestNestedFormats:
    def test_nested_fields_get_fresh_buffer(self):
        rule = line_rule([
            {'name': 'hdr', 'width': 2},
            {'name': 'body', 'width': 4, 'type': 'hexString', 'format': 'fields',
             'fields': [{'name': 'a', 'width': 1}, {'name': 'b', 'width': 1}]},
            {'name': 'tail'},
        ])
        result = decode_line(rule, 'XX4142!!')
        body = result.find('body')
        assert body.text == '2 bytes'
        assert [c.text for c in body.children] == ['A', 'B']
        assert result.find('tail').text == '!!'

    def test_match_format(self, ehcp_rule):
        rule = make_rule({
            'name': 'EHCP direct',
            'regex': ehcp_rule['regex'],
            'fields': [{
                'name': 'frame', 'source': 'capture', 'capture': 'payload',
                'type': 'hexString', 'format': 'match',
                'regex': r'^(?<hdr>[A-Z]{4})(?<size>[0-9A-F]{3})',
                'fields': [
                    {'name': 'hdr', 'source': 'capture', 'capture': 'hdr'},
                    {'name': 'size', 'source': 'capture', 'capture': 'size',
                     'type': 'hexString', 'format': 'dig'},
                    {'name': 'checksum', 'offset': 37, 'width': 4,
                     'type': 'hexString', 'format': 'hex'},
                ],
            }],
        })
        result = decode_line(rule, sring_line(ehcp_payload()))
        assert result.find('hdr').text == 'EHCP'
        assert result.find('size').text == '41'
        assert result.find('checksum').text == '0xd774'
        assert result.values['frame.size'] == 41

    def test_match_without_hit(self, ehcp_rule):
        rule = make_rule({
            'name': 'M', 'regex': ehcp_rule['regex'],
            'fields': [{
                'name': 'frame', 'source': 'capture', 'capture': 'payload',
                'type': 'hexString', 'format': 'match', 'regex': '^ZZZZ',
                'fields': [{'name': 'x'}],
            }],
        })
        node = decode_line(rule, sring_line(ehcp_payload())).nodes[0]
        assert node.status == NodeStatus.ERROR
        assert node.text == 'Decode error: Nested pattern did not match.'

    def test_error_inside_nested_does_not_stop_parent(self):
        rule = line_rule([
            {'name': 'body', 'width': 2, 'format': 'fields',
             'fields': [{'name': 'a', 'width': 5}]},
            {'name': 'tail'},
        ])
        result = decode_line(rule, 'abcd')
        assert result.find('a').status == NodeStatus.ERROR
        assert result.find('body').status == NodeStatus.OK
        assert result.find('tail').text == 'cd'


class TestSerialization:
    def test_to_dict(self, ehcp_rule):
        decoder = FieldDecoder(make_rule(ehcp_rule))
        data = decoder.decode_line(sring_line(ehcp_payload("02A"))).to_dict()
        assert data['rule'] == 'EHCP'
        assert data['status'] == 'ok'
        children = data['fields'][0]['children']
        assert children[2]['status'] == 'error'
        assert children[2]['diagnostic']['path'] == 'ehcp.checksum'
        assert json.dumps(data)


class TestLogging:
    """Errors and skips are logged at WARNING with their diagnostic."""

    def decode_logged(self, caplog, fields, line):
        rule = line_rule(fields)
        with caplog.at_level(logging.WARNING, logger='preview_decoder'):
            result = decode_line(rule, line)
        records = [r for r in caplog.records if r.name == 'preview_decoder']
        return result, records

    def test_error_node_logged(self, caplog):
        result, records = self.decode_logged(
            caplog, [{'name': 'a', 'width': 10}, {'name': 'b', 'width': 2}], 'abc')

        assert result.nodes[0].status == NodeStatus.ERROR
        assert len(records) == 1
        record = records[0]
        assert record.levelno == logging.WARNING
        message = record.getMessage()
        assert 'rule=T' in message
        assert 'field=a' in message
        assert 'source=buffer' in message
        assert 'offset=0' in message
        assert 'width=10' in message
        assert 'data=abc' in message
        assert 'reason=Width 10 exceeds remaining 3 bytes.' in message

    def test_skipped_node_logged(self, caplog):
        result, records = self.decode_logged(
            caplog,
            [{'name': 'a', 'offset': '{b}', 'width': 1},
             {'name': 'b', 'width': 1, 'type': 'string', 'format': 'dec'}],
            '7x')

        assert result.nodes[0].status == NodeStatus.SKIPPED
        assert len(records) == 1
        record = records[0]
        assert record.levelno == logging.WARNING
        message = record.getMessage()
        assert message.startswith('Preview field skipped:')
        assert 'rule=T' in message
        assert 'field=a' in message
        assert 'reason=Invalid offset: Missing variable b.' in message

    def test_clean_decode_is_quiet(self, caplog):
        _, records = self.decode_logged(caplog, [{'name': 'a', 'width': 1}], 'abc')
        assert records == []
