from __future__ import annotations

from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
import io
import json
import os
import shlex
import sys
import tempfile
import textwrap
import unittest

from wasmbuild import cli


PYTHON = shlex.quote(sys.executable)

WRITE_SCRIPT = textwrap.dedent(
    """
    import pathlib
    import sys

    target = pathlib.Path(sys.argv[1])
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("wasm", encoding="utf-8")
    """
)


class BuildCommandTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.workspace = Path(self.temp_dir.name).resolve()
        templates_dir = self.workspace / "config" / "templates"
        templates_dir.mkdir(parents=True)
        (self.workspace / "write.py").write_text(WRITE_SCRIPT)
        (self.workspace / "main.go").write_text("package main")
        (templates_dir / "go.json").write_text(
            json.dumps(
                {
                    "templates": {
                        "go": {
                            "defaultProfile": "debug",
                            "profiles": {
                                "debug": {
                                    "build": [
                                        {
                                            "command": f"{PYTHON} write.py out/{{{{ component_name | to_snake_case }}}}.wasm",
                                            "sources": ["main.go"],
                                            "targets": ["out/{{ component_name | to_snake_case }}.wasm"],
                                        }
                                    ],
                                    "sourceWit": "wit",
                                    "generatedWit": "wit-generated",
                                    "componentWasm": "out/{{ component_name | to_snake_case }}.wasm",
                                    "linkedWasm": "linked/{{ component_name | to_snake_case }}_debug.wasm",
                                },
                                "slow": {
                                    "build": [{"command": f"{PYTHON} -c \"import time; time.sleep(30)\""}],
                                    "sourceWit": "wit",
                                    "generatedWit": "wit-generated",
                                    "componentWasm": "out/slow.wasm",
                                    "linkedWasm": "linked/slow.wasm",
                                },
                                "blocked": {
                                    "build": [{"command": f"{PYTHON} write.py binding/x.go", "mkdirs": ["binding"]}],
                                    "sourceWit": "wit",
                                    "generatedWit": "wit-generated",
                                    "componentWasm": "out/x.wasm",
                                    "linkedWasm": "linked/x.wasm",
                                },
                                "broken": {
                                    "build": [
                                        {"command": f"{PYTHON} -c \"import sys; sys.stderr.write('linker said no'); sys.exit(7)\""}
                                    ],
                                    "sourceWit": "wit",
                                    "generatedWit": "wit-generated",
                                    "componentWasm": "out/x.wasm",
                                    "linkedWasm": "linked/x.wasm",
                                },
                            },
                        }
                    }
                }
            )
        )
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

    def test_build_then_rebuild_skips(self) -> None:
        code, output, _ = self._run("build", "go", "--var", "component_name=MyComponent")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertTrue((self.workspace / "out" / "my_component.wasm").exists())
        self.assertIn(f"componentWasm: {self.workspace / 'out' / 'my_component.wasm'}", output)
        self.assertIn(f"linkedWasm: {self.workspace / 'linked' / 'my_component_debug.wasm'}", output)

        code, output, _ = self._run("build", "go", "--var", "component_name=MyComponent")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("UP-TO-DATE", output)

    def test_build_dry_run_outputs_formatted_commands(self) -> None:
        code, output, _ = self._run("build", "go", "--var", "component_name=demo", "--dry-run")
        self.assertEqual(code, cli.EXIT_OK)
        self.assertIn("[dry-run]", output)
        self.assertIn("write.py out/demo.wasm", output)
        self.assertFalse((self.workspace / "out").exists())

    def test_build_json_report_and_link(self) -> None:
        code, output, _ = self._run(
            "--log-level", "none", "build", "go", "--var", "component_name=demo", "--link", "--json"
        )
        self.assertEqual(code, cli.EXIT_OK)
        payload = json.loads(output)
        self.assertEqual(payload["state"], "succeeded")
        self.assertTrue(payload["linked"])
        self.assertTrue((self.workspace / "linked" / "demo_debug.wasm").exists())

    def test_failed_step_reports_command_and_stderr(self) -> None:
        code, _, errors = self._run("build", "go", "--profile", "broken")
        self.assertEqual(code, cli.EXIT_BUILD_FAILED)
        self.assertIn("Build failed at step 1", errors)
        self.assertIn("Exit code: 7", errors)
        self.assertIn("linker said no", errors)

    def test_exit_codes_for_lookup_and_expansion_errors(self) -> None:
        self.assertEqual(self._run("build", "rust")[0], cli.EXIT_UNKNOWN)
        self.assertEqual(self._run("build", "go", "--profile", "release")[0], cli.EXIT_UNKNOWN)
        self.assertEqual(self._run("build", "go")[0], cli.EXIT_EXPANSION)

    def test_missing_source_exit_code(self) -> None:
        (self.workspace / "main.go").unlink()
        code, _, errors = self._run("build", "go", "--var", "component_name=demo")
        self.assertEqual(code, cli.EXIT_BUILD_FAILED)
        self.assertIn("main.go", errors)

    def test_timeout_exits_with_cancelled_code(self) -> None:
        code, _, errors = self._run("build", "go", "--profile", "slow", "--timeout", "0.3")
        self.assertEqual(code, cli.EXIT_CANCELLED)
        self.assertIn("Timed out", errors)

    def test_directory_preparation_failure_reports_step(self) -> None:
        (self.workspace / "binding").write_text("not a directory")
        code, _, errors = self._run("build", "go", "--profile", "blocked")
        self.assertEqual(code, cli.EXIT_BUILD_FAILED)
        self.assertIn("Build failed at step 1", errors)
        self.assertIn("binding", errors)

    def test_invalid_manifest_exit_code(self) -> None:
        (self.workspace / "config" / "templates" / "bad.yaml").write_text("templates: [oops")
        code, _, errors = self._run("build", "go")
        self.assertEqual(code, cli.EXIT_MANIFEST)
        self.assertIn("Manifest error", errors)

    def test_malformed_variable_is_a_usage_error(self) -> None:
        with redirect_stderr(io.StringIO()):
            with self.assertRaises(SystemExit) as ctx:
                cli.main(["build", "go", "--var", "novalue"])
        self.assertEqual(ctx.exception.code, 2)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
