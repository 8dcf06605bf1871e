"""Tests for reference parsing, expansion and resolution."""

from __future__ import annotations

import pytest

from cloud_provisioner.config.registry import default_registry
from cloud_provisioner.engine.errors import DuplicateAddressError, UnresolvedReferenceError
from cloud_provisioner.engine.references import (
    Unknown,
    contains_unknown,
    encode_unknowns,
    format_address,
    iter_expressions,
    parse_reference,
    substitute,
)
from cloud_provisioner.engine.resolver import (
    InstanceSet,
    build_dependencies,
    collect_references,
    dig,
    expand_instances,
    resolve_attributes,
)
from cloud_provisioner.resources import (
    BucketResource,
    NodeGroupResource,
    SubnetResource,
    VpcResource,
)

REGISTRY = default_registry()


class TestParseReference:
    def test_plain(self) -> None:
        ref = parse_reference("vpc.main.id")
        assert ref is not None
        assert (ref.resource_type, ref.name, ref.key, ref.attribute) == ("vpc", "main", None, "id")
        assert not ref.has_index

    def test_index_key_and_splat(self) -> None:
        assert parse_reference("subnet.private[1].id").key == 1
        assert parse_reference('subnet.az["eu-1a"].id').key == "eu-1a"
        splat = parse_reference("subnet.private[*].id")
        assert splat.splat and splat.key is None

    def test_nested_attribute_path(self) -> None:
        ref = parse_reference("k8s_cluster.main.identity.oidc")
        assert ref.attribute == "identity.oidc"

    @pytest.mark.parametrize("expr", ["var.region", "count.index", "each.key", "vpc", "vpc.main"])
    def test_not_a_reference(self, expr: str) -> None:
        assert parse_reference(expr) is None


def test_format_address() -> None:
    assert format_address("vpc", "main") == "vpc.main"
    assert format_address("subnet", "private", 0) == "subnet.private[0]"
    assert format_address("subnet", "az", "a") == 'subnet.az["a"]'


def test_iter_expressions_reports_paths() -> None:
    value = {"routes": [{"gateway_id": "${internet_gateway.main.id}"}], "name": "x-${var.env}"}
    assert list(iter_expressions(value)) == [
        ("routes[0].gateway_id", "internet_gateway.main.id"),
        ("name", "var.env"),
    ]


class TestSubstitute:
    def test_whole_expression_keeps_type(self) -> None:
        assert substitute("${var.ports}", lambda e, p: [80, 443]) == [80, 443]

    def test_embedded_expression_is_interpolated(self) -> None:
        assert substitute("db-${var.env}-1", lambda e, p: "prod") == "db-prod-1"

    def test_embedded_unknown_makes_whole_string_unknown(self) -> None:
        result = substitute("https://${vpc.main.id}/x", lambda e, p: Unknown(e))
        assert result == Unknown("https://${vpc.main.id}/x")

    def test_encode_unknowns(self) -> None:
        value = {"a": Unknown("vpc.main.id"), "b": [1, Unknown("x.y.z")]}
        assert contains_unknown(value)
        assert encode_unknowns(value) == {
            "a": {"$unknown": "vpc.main.id"},
            "b": [1, {"$unknown": "x.y.z"}],
        }


class TestExpandInstances:
    def test_count_expansion(self) -> None:
        subnet = SubnetResource(
            name="private", count=3, vpc_id="vpc-1", cidr_block="10.0.${count.index}.0/24"
        )
        instances = expand_instances([subnet], {}, REGISTRY)
        assert list(instances) == ["subnet.private[0]", "subnet.private[1]", "subnet.private[2]"]
        assert instances["subnet.private[2]"].attributes["cidr_block"] == "10.0.2.0/24"

    def test_for_each_map(self) -> None:
        subnet = SubnetResource(
            name="az",
            for_each={"a": "10.0.1.0/24", "b": "10.0.2.0/24"},
            vpc_id="vpc-1",
            cidr_block="${each.value}",
            availability_zone="eu-1${each.key}",
        )
        instances = expand_instances([subnet], {}, REGISTRY)
        inst = instances['subnet.az["b"]']
        assert inst.key == "b"
        assert inst.attributes["cidr_block"] == "10.0.2.0/24"
        assert inst.attributes["availability_zone"] == "eu-1b"

    def test_count_zero_is_still_declared(self) -> None:
        bucket = BucketResource(name="logs", count=0, bucket="logs")
        instances = expand_instances([bucket], {}, REGISTRY)
        assert len(instances) == 0
        assert "bucket.logs" in instances.resources

    def test_variables(self) -> None:
        bucket = BucketResource(name="logs", bucket="${var.prefix}-logs")
        instances = expand_instances([bucket], {"prefix": "acme"}, REGISTRY)
        assert instances["bucket.logs"].attributes["bucket"] == "acme-logs"

    def test_unknown_variable(self) -> None:
        bucket = BucketResource(name="logs", bucket="${var.missing}")
        with pytest.raises(UnresolvedReferenceError, match="unknown variable"):
            expand_instances([bucket], {}, REGISTRY)

    def test_count_index_without_count(self) -> None:
        bucket = BucketResource(name="logs", bucket="logs-${count.index}")
        with pytest.raises(UnresolvedReferenceError, match="without 'count'"):
            expand_instances([bucket], {}, REGISTRY)

    def test_malformed_expression(self) -> None:
        bucket = BucketResource(name="logs", bucket="${not a reference}")
        with pytest.raises(UnresolvedReferenceError, match="malformed"):
            expand_instances([bucket], {}, REGISTRY)

    def test_duplicate_address(self) -> None:
        buckets = [BucketResource(name="logs", bucket="a"), BucketResource(name="logs", bucket="b")]
        with pytest.raises(DuplicateAddressError):
            expand_instances(buckets, {}, REGISTRY)


class TestReferences:
    @pytest.fixture
    def instances(self) -> InstanceSet:
        return expand_instances(
            [
                VpcResource(name="main", cidr_block="10.0.0.0/16"),
                SubnetResource(
                    name="private",
                    count=2,
                    vpc_id="${vpc.main.id}",
                    cidr_block="10.0.${count.index}.0/24",
                ),
                NodeGroupResource(
                    name="workers",
                    cluster_name="main",
                    node_group_name="workers",
                    node_role_arn="arn:role",
                    subnet_ids="${subnet.private[*].id}",
                    depends_on=["vpc.main"],
                ),
            ],
            {},
            REGISTRY,
        )

    def test_splat_targets_every_instance(self, instances: InstanceSet) -> None:
        refs = collect_references(
            instances["node_group.workers"].attributes, instances, REGISTRY, address="x"
        )
        assert refs == {"subnet.private[*].id": ["subnet.private[0]", "subnet.private[1]"]}

    def test_dependencies_include_hints(self, instances: InstanceSet) -> None:
        deps = build_dependencies(instances, REGISTRY)
        assert deps["node_group.workers"] == ["subnet.private[0]", "subnet.private[1]", "vpc.main"]
        assert deps["subnet.private[0]"] == ["vpc.main"]
        assert deps["vpc.main"] == []

    @pytest.mark.parametrize(
        ("expression", "reason"),
        [
            ("${vpc.other.id}", "not declared"),
            ("${vpc.main.nope}", "has no attribute 'nope'"),
            ("${subnet.private.id}", "an index is required"),
            ("${vpc.main[0].id}", "cannot be indexed"),
            ("${subnet.private[5].id}", "index out of range"),
            ('${subnet.private["a"].id}', "index it with a number"),
        ],
    )
    def test_invalid_references(
        self, instances: InstanceSet, expression: str, reason: str
    ) -> None:
        with pytest.raises(UnresolvedReferenceError, match=reason) as exc_info:
            collect_references({"bucket": expression}, instances, REGISTRY, address="bucket.b")
        assert exc_info.value.address == "bucket.b"
        assert exc_info.value.attribute_path == "bucket"

    def test_unknown_depends_on_hint(self) -> None:
        instances = expand_instances(
            [BucketResource(name="logs", bucket="logs", depends_on=["vpc.gone"])], {}, REGISTRY
        )
        with pytest.raises(UnresolvedReferenceError) as exc_info:
            build_dependencies(instances, REGISTRY)
        assert exc_info.value.attribute_path == "depends_on"


class TestResolveAttributes:
    def test_known_values(self) -> None:
        values = {"vpc.main": {"id": "vpc-1"}}
        resolved = resolve_attributes(
            {"vpc_id": "${vpc.main.id}"},
            lambda addr, path: dig(values[addr], path),
            {"vpc.main.id": ["vpc.main"]},
        )
        assert resolved == {"vpc_id": "vpc-1"}

    def test_unknown_value(self) -> None:
        resolved = resolve_attributes(
            {"vpc_id": "${vpc.main.id}"},
            lambda addr, path: Unknown(f"{addr}.{path}"),
            {"vpc.main.id": ["vpc.main"]},
        )
        assert resolved == {"vpc_id": Unknown("vpc.main.id")}

    def test_splat_yields_list(self) -> None:
        ids = {"subnet.p[0]": "subnet-a", "subnet.p[1]": "subnet-b"}
        resolved = resolve_attributes(
            {"subnet_ids": "${subnet.p[*].id}"},
            lambda addr, path: ids[addr],
            {"subnet.p[*].id": ["subnet.p[0]", "subnet.p[1]"]},
        )
        assert resolved == {"subnet_ids": ["subnet-a", "subnet-b"]}

    def test_missing_reference_map_entry(self) -> None:
        with pytest.raises(UnresolvedReferenceError):
            resolve_attributes({"vpc_id": "${vpc.main.id}"}, lambda a, p: None, {})


def test_dig() -> None:
    assert dig({"a": {"b": 1}}, "a.b") == 1
    assert dig({"a": 1}, "a.b") is None
    assert dig({"a": Unknown("x")}, "a.b") == Unknown("x")
