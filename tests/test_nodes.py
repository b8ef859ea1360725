"""Tests for node address resolution."""

import pytest

from opcua_poller.config import GroupSettings, NodeSettings
from opcua_poller.exceptions import ConfigurationError, NodeAddressError
from opcua_poller.nodes import build_node_id, resolve_nodes


def test_build_node_id_numeric():
    assert build_node_id(NodeSettings("x", "0", "i", "2262")) == "ns=0;i=2262"


def test_build_node_id_string():
    assert build_node_id(NodeSettings("x", "3", "s", "Tank1.Level")) == "ns=3;s=Tank1.Level"


def test_root_nodes_then_groups_in_order():
    roots = [NodeSettings("a", "0", "i", "1"), NodeSettings("b", "0", "i", "2")]
    groups = [
        GroupSettings("g1", "1", "i", [NodeSettings("c", identifier="3"), NodeSettings("d", identifier="4")]),
        GroupSettings("g2", "2", "s", [NodeSettings("e", identifier="five")]),
    ]

    resolved = resolve_nodes("opcua", roots, groups)

    assert [n.field_name for n in resolved] == ["a", "b", "c", "d", "e"]
    assert [n.metric_name for n in resolved] == ["opcua", "opcua", "g1", "g1", "g2"]
    assert [n.id_str for n in resolved] == [
        "ns=0;i=1", "ns=0;i=2", "ns=1;i=3", "ns=1;i=4", "ns=2;s=five",
    ]


def test_group_without_metric_name_uses_default():
    groups = [GroupSettings("", "1", "i", [NodeSettings("c", identifier="3")])]

    resolved = resolve_nodes("plant", [], groups)

    assert resolved[0].metric_name == "plant"


def test_group_defaults_fill_only_empty_values():
    groups = [GroupSettings("g", "4", "s", [
        NodeSettings("inherits", identifier="Motor.Speed"),
        NodeSettings("own_ns", namespace="2", identifier="Motor.Temp"),
        NodeSettings("own_type", identifier_type="i", identifier="1001"),
    ])]

    resolved = resolve_nodes("opcua", [], groups)

    assert [n.id_str for n in resolved] == [
        "ns=4;s=Motor.Speed",
        "ns=2;s=Motor.Temp",
        "ns=4;i=1001",
    ]


def test_root_nodes_do_not_inherit_group_defaults():
    roots = [NodeSettings("a", "", "i", "1")]
    groups = [GroupSettings("g", "5", "i", [NodeSettings("b", identifier="2")])]

    resolved = resolve_nodes("opcua", roots, groups)

    assert resolved[0].settings.namespace == ""
    assert resolved[1].settings.namespace == "5"


def test_parsed_node_id():
    resolved = resolve_nodes("opcua", [NodeSettings("uri", "0", "i", "2262")], [])

    node_id = resolved[0].require_node_id()
    assert node_id.Identifier == 2262
    assert node_id.NamespaceIndex == 0
    assert resolved[0].address_error is None


@pytest.mark.parametrize("roots, groups", [
    ([NodeSettings("dup", "0", "i", "1"), NodeSettings("dup", "0", "i", "2")], []),
    ([NodeSettings("dup", "0", "i", "1")], [GroupSettings("g", "0", "i", [NodeSettings("dup", identifier="2")])]),
    ([], [
        GroupSettings("g1", "0", "i", [NodeSettings("dup", identifier="1")]),
        GroupSettings("g2", "0", "i", [NodeSettings("dup", identifier="2")]),
    ]),
])
def test_duplicate_field_name_rejected(roots, groups):
    with pytest.raises(ConfigurationError, match="'dup' is duplicated"):
        resolve_nodes("opcua", roots, groups)


def test_empty_field_name_rejected():
    with pytest.raises(ConfigurationError, match="empty field_name"):
        resolve_nodes("opcua", [NodeSettings("", "0", "i", "1")], [])


def test_quality_field_name_reserved():
    with pytest.raises(ConfigurationError, match="reserved"):
        resolve_nodes("opcua", [NodeSettings("quality", "0", "i", "1")], [])


@pytest.mark.parametrize("identifier_type", ["", "x", "S", "int"])
def test_invalid_identifier_type_rejected(identifier_type):
    with pytest.raises(ConfigurationError, match="invalid identifier type"):
        resolve_nodes("opcua", [NodeSettings("a", "0", identifier_type, "1")], [])


def test_identifier_type_from_group_is_validated():
    groups = [GroupSettings("g", "0", "", [NodeSettings("a", identifier="1")])]

    with pytest.raises(ConfigurationError, match="invalid identifier type '' in 'a'"):
        resolve_nodes("opcua", [], groups)


def test_malformed_identifier_is_deferred():
    roots = [
        NodeSettings("good", "0", "i", "2262"),
        NodeSettings("bad", "0", "i", "not-a-number"),
        NodeSettings("also_good", "1", "s", "Tag"),
    ]

    resolved = resolve_nodes("opcua", roots, [])

    assert len(resolved) == 3
    assert resolved[0].address_error is None
    assert resolved[2].address_error is None
    bad = resolved[1]
    assert bad.node_id is None
    assert isinstance(bad.address_error, NodeAddressError)
    assert bad.address_error.field_name == "bad"
    assert bad.address_error.node_id == "ns=0;i=not-a-number"
    with pytest.raises(NodeAddressError):
        bad.require_node_id()


def test_malformed_namespace_is_deferred():
    resolved = resolve_nodes("opcua", [NodeSettings("a", "", "i", "1")], [])

    assert isinstance(resolved[0].address_error, NodeAddressError)
