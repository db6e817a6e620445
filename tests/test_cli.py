"""Tests for the command line interface."""

from pathlib import Path

from click.testing import CliRunner

from omnistudio_resolver.cli import cli

ORG = str(Path(__file__).parent / "fixtures" / "org")


def _run(*args):
    return CliRunner().invoke(cli, list(args))


class TestComponents:
    def test_lists_every_type(self):
        result = _run("components", ORG)
        assert result.exit_code == 0, result.output
        assert "Integration Procedures (7)" in result.output
        assert "OmniScripts (1)" in result.output
        assert "Data Mappers (1)" in result.output
        assert "Total: 9 components" in result.output

    def test_filter_and_search(self):
        result = _run("components", ORG, "-t", "integration-procedure", "-s", "cycle")
        assert result.exit_code == 0, result.output
        assert "Integration Procedures (2)" in result.output
        assert "Cycle_Alpha" in result.output
        assert "Customer_GetDetails" not in result.output
        assert "OmniScripts (" not in result.output
        assert "Data Mappers (" not in result.output

    def test_progress_prints_each_stage_on_its_own_line(self):
        result = _run("components", ORG)
        assert result.exit_code == 0, result.output
        stage_lines = [line for line in result.output.splitlines() if line.endswith("...")]
        assert "  Listing Integration Procedures..." in stage_lines
        assert "  Expanding..." in stage_lines
        assert len(stage_lines) == len(set(stage_lines))
        assert all(line.count("...") <= 1 for line in result.output.splitlines())

    def test_missing_directory(self):
        result = _run("components", "/nonexistent/org")
        assert result.exit_code != 0


class TestTree:
    def test_expanded_omniscript(self):
        result = _run("tree", ORG, "onboarding", "-t", "omniscript")
        assert result.exit_code == 0, result.output
        assert "OS-Onboarding" in result.output
        assert "IP-Pricing_Calc" in result.output
        assert "3 expanded child structure(s)" in result.output

    def test_cycle_is_marked(self):
        result = _run("tree", ORG, "Cycle_Alpha")
        assert result.exit_code == 0, result.output
        assert "(cycle)" in result.output

    def test_unresolved_reference_is_marked(self):
        result = _run("tree", ORG, "Dangling_Ref")
        assert "(unresolved)" in result.output

    def test_depth_limit(self):
        result = _run("tree", ORG, "Customer_GetDetails", "--max-depth", "1")
        assert result.exit_code == 0, result.output
        assert "(depth-limit)" in result.output

    def test_not_found(self):
        result = _run("tree", ORG, "Ghost_Proc")
        assert result.exit_code != 0
        assert "Component not found: Ghost_Proc" in result.output


class TestGraph:
    def test_edges_cycles_and_unresolved(self):
        result = _run("graph", ORG)
        assert result.exit_code == 0, result.output
        assert "Edges (4)" in result.output
        assert "OS-Onboarding => IP-Customer_GetDetails" in result.output
        assert "Skipped circular references" in result.output
        assert "Unresolved references" in result.output
        assert "Ghost_Proc" in result.output
