"""
tests/test_graph.py — Resource graph tests.

Logical IDs, record creation, reference resolution, decorators,
cycle detection and ordering.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from conftest import LAMBDA_EXECUTE_ARN, SNS_TOPIC_SOURCE_ARN, lambda_data

from tern.core.entities import (
    CustomProvisioningStep,
    FunctionDescriptor,
    FunctionOptions,
    Ref,
    SNSPermission,
    StepOutput,
)
from tern.errors import CyclicDependencyError, DuplicateNameError, UnresolvedReferenceError
from tern.graph.build import LOGICAL_ID_ENV, build
from tern.graph.graph import (
    EVENT_SOURCE,
    FUNCTION,
    PERMISSION,
    STEP,
    DeferredOutput,
    DeferredRef,
)
from tern.graph.ids import FINGERPRINT_LENGTH, fingerprint, logical_id, sanitize
from tern.template.synth import synthesize


def handler(event, context):
    return None


def cfg_handler(request):
    return {"key": "value"}


def _step(name="cfgStep", **kwargs):
    return CustomProvisioningStep(name, cfg_handler, LAMBDA_EXECUTE_ARN, **kwargs)


# ─────────────────────────────────────────────
# LOGICAL IDS
# ─────────────────────────────────────────────
class TestLogicalIds:
    def test_sanitize(self):
        assert sanitize("mock-lambda_1") == "MockLambda1"
        assert sanitize("fn1") == "Fn1"

    def test_sanitize_leading_digit(self):
        assert sanitize("1fn") == "R1fn"
        assert sanitize("---") == "R"

    def test_sanitize_truncates(self):
        assert len(sanitize("a" * 100)) == 32

    def test_fingerprint_length_prefixed(self):
        assert fingerprint("ab", "c") != fingerprint("a", "bc")
        assert len(fingerprint("x")) == FINGERPRINT_LENGTH

    def test_deterministic(self):
        assert logical_id("fn1", FUNCTION) == logical_id("fn1", FUNCTION)

    def test_colliding_prefixes_differ(self):
        a = logical_id("my-fn", FUNCTION)
        b = logical_id("my_fn", FUNCTION)
        assert a[:-FINGERPRINT_LENGTH] == b[:-FINGERPRINT_LENGTH]
        assert a != b

    def test_discriminant_matters(self):
        assert logical_id("x", FUNCTION) != logical_id("x", STEP)

    def test_ids_stable_across_builds(self, descriptors):
        first = build(descriptors)
        second = build(lambda_data())
        assert first.order == second.order


# ─────────────────────────────────────────────
# RECORDS
# ─────────────────────────────────────────────
class TestRecords:
    def test_three_functions(self, descriptors):
        graph = build(descriptors)
        assert len(graph) == 7
        assert [r.name for r in graph.functions()] == ["fn1", "fn2", "fn3"]
        assert graph.edges == ()

    def test_attachments(self, descriptors):
        graph = build(descriptors)
        fn1 = graph.logical_id("fn1")
        attached = graph.attachments(fn1)
        assert [r.kind for r in attached] == [PERMISSION, PERMISSION, EVENT_SOURCE]
        assert graph.attachments(graph.logical_id("fn2")) == []
        assert len(graph.attachments(graph.logical_id("fn3"))) == 1

    def test_owner_precedes_attachments(self, descriptors):
        graph = build(descriptors)
        position = {lid: i for i, lid in enumerate(graph.order)}
        for record in graph:
            if record.owner is not None:
                assert position[record.owner] < position[record.logical_id]

    def test_function_properties(self, descriptors):
        graph = build(descriptors)
        fn1 = graph.get(graph.logical_id("fn1"))
        assert fn1.kind == FUNCTION
        assert fn1.resource_type == "AWS::Lambda::Function"
        assert fn1.properties["Role"] == LAMBDA_EXECUTE_ARN
        assert fn1.properties["Handler"] == "conftest.mock_lambda1"
        assert fn1.properties["Environment"]["Variables"][LOGICAL_ID_ENV] == fn1.logical_id

    def test_permission_properties(self, descriptors):
        graph = build(descriptors)
        fn1 = graph.logical_id("fn1")
        s3, sns, _ = graph.attachments(fn1)
        assert s3.properties["FunctionName"] == DeferredRef(fn1, "Arn")
        assert s3.properties["Principal"] == "s3.amazonaws.com"
        assert list(s3.metadata["EventFilters"]["Events"]) == [
            "s3:ObjectCreated:*", "s3:ObjectRemoved:*",
        ]
        assert sns.properties["SourceArn"] == SNS_TOPIC_SOURCE_ARN
        assert "EventFilters" not in sns.metadata

    def test_binding_properties(self, descriptors):
        graph = build(descriptors)
        fn1 = graph.logical_id("fn1")
        binding = graph.attachments(fn1)[-1]
        assert binding.resource_type == "AWS::Lambda::EventSourceMapping"
        assert binding.properties["FunctionName"] == DeferredRef(fn1, None)
        assert binding.properties["StartingPosition"] == "TRIM_HORIZON"
        assert binding.properties["BatchSize"] == 10

    def test_same_source_on_two_functions(self, descriptors):
        graph = build(descriptors)
        sns_ids = [
            r.logical_id for r in graph
            if r.kind == PERMISSION and r.properties["SourceArn"] == SNS_TOPIC_SOURCE_ARN
        ]
        assert len(sns_ids) == 2
        assert len(set(sns_ids)) == 2

    def test_records_frozen(self, descriptors):
        graph = build(descriptors)
        record = graph.get(graph.logical_id("fn1"))
        with pytest.raises(TypeError):
            record.properties["Role"] = "other"
        with pytest.raises(AttributeError):
            record.name = "other"

    def test_unknown_name(self, descriptors):
        graph = build(descriptors)
        with pytest.raises(KeyError, match="fn9"):
            graph.logical_id("fn9")

    def test_step_record(self):
        graph = build([], [_step(properties={"a": 1})])
        step = graph.steps()[0]
        assert step.resource_type == "Custom::TernProvisioningStep"
        assert step.properties["StepName"] == "cfgStep"
        assert step.properties["Properties"]["a"] == 1

    def test_empty(self):
        graph = build([])
        assert len(graph) == 0
        assert graph.order == ()


# ─────────────────────────────────────────────
# NAMES + REFERENCES
# ─────────────────────────────────────────────
class TestReferences:
    def test_duplicate_function_name(self):
        fns = [
            FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN),
        ]
        with pytest.raises(DuplicateNameError, match="'fn'"):
            build(fns)

    def test_duplicate_across_kinds(self):
        fns = [FunctionDescriptor("cfgStep", handler, LAMBDA_EXECUTE_ARN)]
        with pytest.raises(DuplicateNameError) as exc:
            build(fns, [_step()])
        assert exc.value.kinds == (FUNCTION, STEP)

    def test_ref_creates_edge(self):
        fns = [
            FunctionDescriptor("producer", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor(
                "consumer", handler, LAMBDA_EXECUTE_ARN,
                options=FunctionOptions(description="reads producer"),
            ),
        ]
        fns[1].permissions.append(SNSPermission(source_arn=Ref("producer")))
        graph = build(fns)
        producer = graph.logical_id("producer")
        perm = graph.attachments(graph.logical_id("consumer"))[0]
        assert perm.properties["SourceArn"] == DeferredRef(producer, "Arn")
        assert (perm.logical_id, producer) in graph.edges

    def test_unresolved_ref(self):
        fn = FunctionDescriptor("fn", handler, Ref("missingRole"))
        with pytest.raises(UnresolvedReferenceError) as exc:
            build([fn])
        assert exc.value.target == "missingRole"
        assert exc.value.referrer == "fn"

    def test_step_output_must_name_step(self):
        fns = [
            FunctionDescriptor("a", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor("b", handler, LAMBDA_EXECUTE_ARN, code={"S3Key": StepOutput("a", "k")}),
        ]
        with pytest.raises(UnresolvedReferenceError, match="'a'"):
            build(fns)

    def test_step_output_resolves(self):
        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN,
                                code={"S3Bucket": StepOutput("cfgStep", "bucket")})
        graph = build([fn], [_step()])
        step_id = graph.logical_id("cfgStep")
        record = graph.get(graph.logical_id("fn"))
        assert record.properties["Code"]["S3Bucket"] == DeferredOutput(step_id, "bucket")
        assert record.depends_on == (step_id,)

    def test_depends_on_step(self):
        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, depends_on_step="cfgStep")
        graph = build([fn], [_step()])
        assert graph.edges == ((graph.logical_id("fn"), graph.logical_id("cfgStep")),)

    def test_depends_on_step_must_be_step(self):
        fns = [
            FunctionDescriptor("a", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor("b", handler, LAMBDA_EXECUTE_ARN, depends_on_step="a"),
        ]
        with pytest.raises(UnresolvedReferenceError):
            build(fns)


# ─────────────────────────────────────────────
# DECORATORS
# ─────────────────────────────────────────────
class TestDecorators:
    def test_metadata_and_edge(self):
        def decorate(record, ctx):
            return record.with_metadata(Config=ctx.step_output("cfgStep", "key"))

        fn = FunctionDescriptor("fn1", handler, LAMBDA_EXECUTE_ARN, decorator=decorate)
        graph = build([fn], [_step()])
        fn_id = graph.logical_id("fn1")
        step_id = graph.logical_id("cfgStep")
        assert graph.edges == ((fn_id, step_id),)
        assert graph.order.index(step_id) < graph.order.index(fn_id)
        assert graph.get(fn_id).metadata["Config"] == DeferredOutput(step_id, "key")

    def test_none_keeps_record(self):
        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=lambda r, c: None)
        graph = build([fn])
        assert graph.get(graph.logical_id("fn")).metadata == {}

    def test_wrong_return_type(self):
        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=lambda r, c: {})
        with pytest.raises(TypeError, match="ResourceRecord"):
            build([fn])

    def test_cannot_change_identity(self):
        import dataclasses

        def rename(record, ctx):
            return dataclasses.replace(record, logical_id="Other")

        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=rename)
        with pytest.raises(ValueError, match="logical_id"):
            build([fn])

    def test_added_edge_must_target_step(self):
        def link(record, ctx):
            return record.with_dependency(ctx.logical_id("other"))

        fns = [
            FunctionDescriptor("other", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=link),
        ]
        with pytest.raises(UnresolvedReferenceError):
            build(fns)

    def test_property_ref_resolved(self):
        def point(record, ctx):
            return record.with_properties(Environment={"Variables": {"PEER": Ref("peer")}})

        fns = [
            FunctionDescriptor("peer", handler, LAMBDA_EXECUTE_ARN),
            FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=point),
        ]
        graph = build(fns)
        fn_id = graph.logical_id("fn")
        peer_id = graph.logical_id("peer")
        variables = graph.get(fn_id).properties["Environment"]["Variables"]
        assert variables["PEER"] == DeferredRef(peer_id, "Arn")
        assert variables[LOGICAL_ID_ENV] == fn_id
        assert graph.edges == ((fn_id, peer_id),)

        doc = synthesize(graph).to_dict()
        assert doc["Resources"][fn_id]["Properties"]["Environment"]["Variables"]["PEER"] == {
            "Fn::GetAtt": [peer_id, "Arn"],
        }

    def test_property_ref_unknown(self):
        def point(record, ctx):
            return record.with_properties(Description=Ref("nothing", attribute=None))

        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=point)
        with pytest.raises(UnresolvedReferenceError, match="referenced by 'fn'"):
            build([fn])

    def test_context_unknown_name(self):
        def lookup(record, ctx):
            ctx.logical_id("nothing")

        fn = FunctionDescriptor("fn", handler, LAMBDA_EXECUTE_ARN, decorator=lookup)
        with pytest.raises(UnresolvedReferenceError, match="nothing"):
            build([fn])


# ─────────────────────────────────────────────
# CYCLES + ORDER
# ─────────────────────────────────────────────
class TestOrdering:
    def test_cycle_detected(self):
        def decorate(record, ctx):
            return record.with_metadata(Config=ctx.step_output("cfgStep", "key"))

        fn = FunctionDescriptor("fn1", handler, LAMBDA_EXECUTE_ARN, decorator=decorate)
        step = _step(properties={"Target": Ref("fn1")})
        with pytest.raises(CyclicDependencyError) as exc:
            build([fn], [step])
        cycle = exc.value.cycle
        assert cycle[0] == cycle[-1]
        assert len(cycle) == 3
        assert set(cycle) == {logical_id("fn1", FUNCTION), logical_id("cfgStep", STEP)}

    def test_producers_first(self):
        fns = [
            FunctionDescriptor("consumer", handler, Ref("roleStep", attribute=None)),
            FunctionDescriptor("independent", handler, LAMBDA_EXECUTE_ARN),
        ]
        steps = [_step("roleStep", properties={"Seed": StepOutput("seedStep", "v")}), _step("seedStep")]
        graph = build(fns, steps)
        names = [graph.get(lid).name for lid in graph.order]
        assert names.index("seedStep") < names.index("roleStep") < names.index("consumer")

    def test_ties_keep_declaration_order(self, descriptors):
        graph = build(descriptors)
        assert [r.name for r in graph.functions()] == ["fn1", "fn2", "fn3"]

    def test_step_dependencies(self):
        steps = [
            _step("a"),
            _step("b", properties={"x": StepOutput("a", "k")}),
            _step("c", properties={"x": StepOutput("b", "k")}),
        ]
        graph = build([], steps)
        deps = graph.step_dependencies()
        a, b, c = (graph.logical_id(n) for n in "abc")
        assert deps[a] == set()
        assert deps[b] == {a}
        assert deps[c] == {a, b}
