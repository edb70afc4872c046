"""Tests for Node value object."""

import pytest
from stagecoach.domain.value_objects.node import Node


class TestNode:
    def test_default_values(self):
        node = Node(host="example.com")
        assert node.user == "root"
        assert node.port == 22

    def test_node_id_is_host(self):
        node = Node(host="10.0.0.1", user="deploy", port=2222)
        assert node.node_id == "10.0.0.1"

    def test_str(self):
        node = Node(host="web1.example.com", user="admin", port=22)
        assert str(node) == "admin@web1.example.com:22"

    def test_frozen(self):
        node = Node(host="example.com")
        with pytest.raises(AttributeError):
            node.host = "other.com"

    def test_equality(self):
        assert Node(host="example.com") == Node(host="example.com")
        assert Node(host="a.com") != Node(host="b.com")


class TestNodeValidation:
    def test_empty_host_rejected(self):
        with pytest.raises(ValueError, match="Invalid node host"):
            Node(host="")

    def test_bad_hostname_rejected(self):
        with pytest.raises(ValueError, match="Invalid node host"):
            Node(host="-bad-.example.com")

    def test_empty_user_rejected(self):
        with pytest.raises(ValueError, match="user cannot be empty"):
            Node(host="example.com", user="")

    def test_port_bounds(self):
        with pytest.raises(ValueError, match="Port must be"):
            Node(host="example.com", port=0)
        with pytest.raises(ValueError, match="Port must be"):
            Node(host="example.com", port=70000)


class TestNodeParse:
    def test_host_only(self):
        node = Node.parse("node1")
        assert node == Node(host="node1", user="root", port=22)

    def test_default_user(self):
        assert Node.parse("node1", default_user="deploy").user == "deploy"

    def test_user_host_port(self):
        node = Node.parse("admin@10.0.0.5:2222")
        assert node.user == "admin"
        assert node.host == "10.0.0.5"
        assert node.port == 2222

    def test_ipv6_brackets(self):
        node = Node.parse("ops@[fe80::1]:2200")
        assert node.host == "fe80::1"
        assert node.user == "ops"
        assert node.port == 2200

    def test_bare_ipv6(self):
        assert Node.parse("fe80::1").host == "fe80::1"

    def test_unterminated_bracket(self):
        with pytest.raises(ValueError, match="Unterminated"):
            Node.parse("[fe80::1")

    def test_parse_many_from_string(self):
        nodes = Node.parse_many("node1, admin@node2:2222,")
        assert [n.node_id for n in nodes] == ["node1", "node2"]
        assert nodes[1].user == "admin"

    def test_parse_many_rejects_duplicates(self):
        with pytest.raises(ValueError, match="Duplicate node"):
            Node.parse_many(["node1", "deploy@node1:2222"])
