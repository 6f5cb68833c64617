"""
tests/test_cli.py — CLI tests.

Tests commands using Click CliRunner against a stack file written to a
temporary directory.
"""

import json
import logging
import os
import sys
import textwrap

import pytest
import structlog
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from click.testing import CliRunner

import tern.log
from tern.cli import main
from tern.cli.loader import LoadError, load_stack
from tern.core.builder import StackBuilder
from tern.graph.graph import FUNCTION, STEP
from tern.graph.ids import logical_id


STACK_FILE = textwrap.dedent('''
    from tern import SNSPermission, StackBuilder, Ref

    ROLE = "LambdaExecutor"
    TOPIC = "arn:aws:sns:us-west-2:000000000000:someTopic"


    def seed(request):
        return {"CustomResource": "Victory!"}


    def fail(request):
        raise RuntimeError("seed failed")


    def handle(event, context):
        return None


    def decorate(record, ctx):
        return record.with_metadata(
            CustomResource=ctx.step_output("cfgStep", "CustomResource"),
        )


    stack = StackBuilder("orders")
    stack.step("cfgStep", seed, role=ROLE)
    stack.function(handle, role=ROLE, name="fn1", decorator=decorate,
                   permissions=[SNSPermission(source_arn=TOPIC)])


    def failing():
        s = StackBuilder("broken")
        s.step("cfgStep", fail, role=ROLE)
        return s


    def cyclic():
        s = StackBuilder("cyclic")
        s.step("cfgStep", seed, role=ROLE, properties={"Target": Ref("fn1")})
        s.function(handle, role=ROLE, name="fn1", decorator=decorate)
        return s


    def unnamed():
        s = StackBuilder()
        s.function(handle, role=ROLE, name="fn1")
        return s


    not_a_stack = 42
''')


@pytest.fixture(autouse=True)
def workdir(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for var in ("TERN_STACK_NAME", "TERN_PROVISION_TIMEOUT", "TERN_MAX_WORKERS",
                "TERN_LOG_LEVEL", "TERN_LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    (tmp_path / "app_stack.py").write_text(STACK_FILE)
    yield tmp_path
    logging.getLogger().handlers.clear()
    structlog.reset_defaults()
    tern.log._configured = False


runner = CliRunner()

FN1 = logical_id("fn1", FUNCTION)
CFG_STEP = logical_id("cfgStep", STEP)


# ─────────────────────────────────────────────
# LOADER
# ─────────────────────────────────────────────
class TestLoader:
    def test_file_attribute(self):
        stack = load_stack("app_stack.py:stack")
        assert isinstance(stack, StackBuilder)
        assert stack.name == "orders"

    def test_callable(self):
        assert load_stack("app_stack.py:failing").name == "broken"

    def test_default_attribute(self):
        assert load_stack("app_stack.py").name == "orders"

    def test_default_name(self):
        assert load_stack("app_stack.py:unnamed").name == "stack"
        assert load_stack("app_stack.py:unnamed", "payments").name == "payments"
        assert load_stack("app_stack.py:stack", "payments").name == "orders"

    def test_missing_file(self):
        with pytest.raises(LoadError, match="not found"):
            load_stack("nothing.py:stack")

    def test_missing_attribute(self):
        with pytest.raises(LoadError, match="no attribute"):
            load_stack("app_stack.py:other")

    def test_wrong_type(self):
        with pytest.raises(LoadError, match="StackBuilder"):
            load_stack("app_stack.py:not_a_stack")

    def test_bad_module(self):
        with pytest.raises(LoadError, match="Cannot import"):
            load_stack("no_such_module_anywhere:stack")


# ─────────────────────────────────────────────
# TEMPLATE
# ─────────────────────────────────────────────
class TestTemplate:
    def test_yaml_file(self, workdir):
        result = runner.invoke(main, ["template", "app_stack.py:stack", "-o", "out.yaml"])
        assert result.exit_code == 0
        doc = yaml.safe_load((workdir / "out.yaml").read_text())
        assert len(doc["Resources"]) == 3
        assert list(doc["Resources"])[:2] == [CFG_STEP, FN1]
        assert "TernProvisioningServiceToken" in doc["Parameters"]
        assert doc["Resources"][FN1]["DependsOn"] == [CFG_STEP]
        assert doc["Resources"][FN1]["Metadata"]["CustomResource"] == {
            "Fn::GetAtt": [CFG_STEP, "CustomResource"],
        }

    def test_json_file(self, workdir):
        result = runner.invoke(main, [
            "template", "app_stack.py:stack", "-o", "out.json", "--format", "json",
        ])
        assert result.exit_code == 0
        doc = json.loads((workdir / "out.json").read_text())
        assert doc["Description"] == "tern stack: orders"

    def test_config_output_format(self, workdir):
        (workdir / "tern.yaml").write_text("output_format: json\n")
        result = runner.invoke(main, ["template", "app_stack.py:stack", "-o", "out.txt"])
        assert result.exit_code == 0
        json.loads((workdir / "out.txt").read_text())

    def test_deterministic(self, workdir):
        runner.invoke(main, ["template", "app_stack.py:stack", "-o", "a.yaml"])
        runner.invoke(main, ["template", "app_stack.py:stack", "-o", "b.yaml"])
        assert (workdir / "a.yaml").read_text() == (workdir / "b.yaml").read_text()

    def test_set_override(self, workdir):
        result = runner.invoke(main, [
            "template", "app_stack.py:stack", "-o", "out.yaml", "--set", "cfgStep.Mode=reseed",
        ])
        assert result.exit_code == 0
        doc = yaml.safe_load((workdir / "out.yaml").read_text())
        assert doc["Resources"][CFG_STEP]["Properties"]["Properties"] == {"Mode": "reseed"}

    def test_set_unknown_step(self):
        result = runner.invoke(main, ["template", "app_stack.py:stack", "--set", "nope.a=1"])
        assert result.exit_code == 1
        assert "No step named 'nope'" in result.output

    def test_stdout(self):
        result = runner.invoke(main, ["template", "app_stack.py:stack"])
        assert result.exit_code == 0
        assert "AWS::Lambda::Function" in result.output

    def test_cycle(self):
        result = runner.invoke(main, ["template", "app_stack.py:cyclic"])
        assert result.exit_code == 1
        assert "Cyclic dependency" in result.output

    def test_load_error(self):
        result = runner.invoke(main, ["template", "missing.py:stack"])
        assert result.exit_code == 1
        assert "Error: File not found" in result.output


# ─────────────────────────────────────────────
# GRAPH
# ─────────────────────────────────────────────
class TestGraph:
    def test_graph(self):
        result = runner.invoke(main, ["graph", "app_stack.py:stack"])
        assert result.exit_code == 0
        assert "Stack: orders (3 resources)" in result.output
        assert "Dependencies:" in result.output
        assert "fn1 → cfgStep" in result.output
        assert FN1 in result.output

    def test_config_stack_name(self, workdir):
        (workdir / "tern.yaml").write_text("stack_name: payments\n")
        result = runner.invoke(main, ["graph", "app_stack.py:unnamed"])
        assert result.exit_code == 0
        assert "Stack: payments (1 resources)" in result.output

    def test_env_stack_name(self):
        result = runner.invoke(
            main, ["template", "app_stack.py:unnamed"], env={"TERN_STACK_NAME": "payments"},
        )
        assert result.exit_code == 0
        assert "tern stack: payments" in result.output

    def test_builder_name_wins(self):
        result = runner.invoke(
            main, ["graph", "app_stack.py:stack"], env={"TERN_STACK_NAME": "payments"},
        )
        assert result.exit_code == 0
        assert "Stack: orders" in result.output


# ─────────────────────────────────────────────
# DEPLOY + DISCOVER
# ─────────────────────────────────────────────
class TestDeploy:
    def test_deploy_and_discover(self, workdir):
        result = runner.invoke(main, [
            "deploy", "app_stack.py:stack", "--snapshot-out", "snapshot.json",
        ])
        assert result.exit_code == 0
        assert "✓ cfgStep (Succeeded)" in result.output

        snapshot = json.loads((workdir / "snapshot.json").read_text())
        assert snapshot["resources"][FN1]["metadata"] == {"CustomResource": "Victory!"}

        result = runner.invoke(main, ["discover", FN1, "-s", "snapshot.json"])
        assert result.exit_code == 0
        assert '"CustomResource": "Victory!"' in result.output

    def test_deploy_failure(self, workdir):
        result = runner.invoke(main, [
            "deploy", "app_stack.py:failing", "--snapshot-out", "snapshot.json",
        ])
        assert result.exit_code == 1
        assert "✗ cfgStep (Failed): RuntimeError: seed failed" in result.output
        assert (workdir / "snapshot.json").exists()

    def test_delete(self):
        result = runner.invoke(main, ["deploy", "app_stack.py:stack", "--kind", "delete"])
        assert result.exit_code == 0
        assert "Running Delete for orders" in result.output

    def test_discover_absent(self, workdir):
        runner.invoke(main, ["deploy", "app_stack.py:stack", "--snapshot-out", "snapshot.json"])
        result = runner.invoke(main, ["discover", "Gone123", "-s", "snapshot.json"])
        assert result.exit_code == 1
        assert "not found in discovery snapshot" in result.output

    def test_discover_bad_snapshot(self, workdir):
        (workdir / "snapshot.json").write_text("{not json")
        result = runner.invoke(main, ["discover", FN1, "-s", "snapshot.json"])
        assert result.exit_code == 1
        assert "cannot read snapshot" in result.output


# ─────────────────────────────────────────────
# GLOBAL OPTIONS
# ─────────────────────────────────────────────
class TestGlobalOptions:
    def test_missing_config(self):
        result = runner.invoke(main, ["-c", "nope.yaml", "graph", "app_stack.py:stack"])
        assert result.exit_code == 1
        assert "Config file not found" in result.output

    def test_log_level_option(self):
        result = runner.invoke(main, ["--log-level", "error", "graph", "app_stack.py:stack"])
        assert result.exit_code == 0
        assert logging.getLogger("tern").level == logging.ERROR
