from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import io
import os
import tempfile
import textwrap
import unittest

from wasmbuild import cli


MANIFEST = textwrap.dedent(
    """
    templates:
      zig:
        defaultProfile: release
        profiles:
          debug:
            build:
              - command: zig build -Doptimize=Debug
            sourceWit: wit
            generatedWit: wit-generated
            componentWasm: "zig-out/bin/{{ component_name | to_snake_case }}.wasm"
            linkedWasm: "linked/{{ component_name | to_snake_case }}_debug.wasm"
          release:
            build:
              - command: zig build -Doptimize=ReleaseSmall
                dir: "{{ build_dir }}"
            sourceWit: wit
            generatedWit: wit-generated
            componentWasm: "zig-out/bin/{{ component_name | to_snake_case }}.wasm"
            linkedWasm: "linked/{{ component_name | to_snake_case }}_release.wasm"
    """
)


class ListAndValidateCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name)
        self.templates_dir = self.workspace / "config" / "templates"
        self.templates_dir.mkdir(parents=True)
        self.previous_cwd = os.getcwd()
        os.chdir(self.workspace)

    def tearDown(self) -> None:
        os.chdir(self.previous_cwd)
        self.temp_dir.cleanup()

    def _run(self, *argv: str) -> tuple[int, str, str]:
        stdout, stderr = io.StringIO(), io.StringIO()
        with redirect_stdout(stdout), redirect_stderr(stderr):
            code = cli.main(list(argv))
        return code, stdout.getvalue(), stderr.getvalue()

    def test_list_without_templates(self) -> None:
        code, output, _ = self._run("list")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("No templates found", output)

    def test_list_marks_default_profile(self) -> None:
        (self.templates_dir / "zig.yaml").write_text(MANIFEST)
        code, output, _ = self._run("list")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("zig: debug, release (default)", output)

    def test_list_with_explicit_manifest(self) -> None:
        (self.workspace / "golem.yaml").write_text(MANIFEST)
        code, output, _ = self._run("list", "--manifest", "golem.yaml")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("golem.yaml", output)

    def test_validate_reports_referenced_variables(self) -> None:
        (self.templates_dir / "zig.yaml").write_text(MANIFEST)
        code, output, _ = self._run("validate")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("Validated 1 manifest(s), 1 template(s)", output)
        self.assertIn("Variables referenced: build_dir, component_name", output)

    def test_validate_with_variables_detects_undefined(self) -> None:
        (self.templates_dir / "zig.yaml").write_text(MANIFEST)
        code, _, errors = self._run("validate", "--var", "component_name=demo")
        self.assertEqual(code, cli.EXIT_EXPANSION)
        self.assertIn("build_dir", errors)

        code, _, _ = self._run("validate", "--var", "component_name=demo", "--var", "build_dir=native")
        self.assertEqual(code, cli.EXIT_OK)

    def test_validate_rejects_invalid_manifest(self) -> None:
        (self.templates_dir / "zig.yaml").write_text(MANIFEST.replace("defaultProfile: release", "defaultProfile: small"))
        code, _, errors = self._run("validate")
        self.assertEqual(code, cli.EXIT_MANIFEST)
        self.assertIn("defaultProfile", errors)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
