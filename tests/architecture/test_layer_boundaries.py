"""
Import-boundary enforcement for the four packages.

1. Engine purity      -- tariff_engines/** may not import the database,
                         the ORM models, persistence services, config or
                         services.
2. Engine no-impure   -- tariff_engines/** may not read the wall clock or
                         the environment.
3. Kernel direction   -- tariff_kernel/** never imports the layers built
                         on top of it.
4. Domain purity      -- tariff_kernel/domain/** never touches the database.
5. Config direction   -- tariff_config/** depends on the kernel only.

All scanning is done via AST; these tests are read-only.
"""

import ast
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]


def _python_files(package: str) -> list[Path]:
    return sorted((ROOT / package).rglob("*.py"))


def _extract_imports(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, module_string) for every import in *path*."""
    tree = ast.parse(path.read_text(), filename=str(path))
    results: list[tuple[int, str]] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            for alias in node.names:
                results.append((node.lineno, alias.name))
        elif isinstance(node, ast.ImportFrom) and node.module:
            results.append((node.lineno, node.module))
    return results


def _extract_attribute_calls(path: Path) -> list[tuple[int, str]]:
    """Return (line_number, 'receiver.attr') for two-level attribute references."""
    tree = ast.parse(path.read_text(), filename=str(path))
    return [
        (node.lineno, f"{node.value.id}.{node.attr}")
        for node in ast.walk(tree)
        if isinstance(node, ast.Attribute) and isinstance(node.value, ast.Name)
    ]


def _matches_any(module: str, prefixes: tuple[str, ...]) -> bool:
    return any(module == p or module.startswith(f"{p}.") for p in prefixes)


def _violations(package: str, forbidden: tuple[str, ...]) -> list[str]:
    return [
        f"  {path.relative_to(ROOT)}:{lineno} imports '{module}'"
        for path in _python_files(package)
        for lineno, module in _extract_imports(path)
        if _matches_any(module, forbidden)
    ]


class TestEnginePurity:

    FORBIDDEN_PREFIXES = (
        "sqlalchemy",
        "sqlite3",
        "yaml",
        "tariff_kernel.db",
        "tariff_kernel.models",
        "tariff_kernel.services",
        "tariff_config",
        "tariff_services",
    )

    def test_engine_files_have_no_forbidden_imports(self):
        violations = _violations("tariff_engines", self.FORBIDDEN_PREFIXES)
        assert not violations, (
            "Engine purity violation: tariff_engines/** must stay free of "
            "I/O and upper layers:\n" + "\n".join(violations)
        )


class TestEngineNoImpureFunctions:
    """Evaluation moments are passed in; engines never look them up."""

    FORBIDDEN_CALLS = frozenset({
        "datetime.now",
        "datetime.utcnow",
        "date.today",
        "time.time",
        "os.environ",
        "os.getenv",
    })

    def test_no_wall_clock_or_environment(self):
        violations = [
            f"  {path.relative_to(ROOT)}:{lineno} uses '{call}'"
            for path in _python_files("tariff_engines")
            for lineno, call in _extract_attribute_calls(path)
            if call in self.FORBIDDEN_CALLS
        ]
        assert not violations, "Impure call in an engine:\n" + "\n".join(violations)


class TestKernelDirection:

    def test_kernel_never_imports_upper_layers(self):
        violations = _violations(
            "tariff_kernel", ("tariff_engines", "tariff_config", "tariff_services")
        )
        assert not violations, "Kernel imports an upper layer:\n" + "\n".join(violations)

    def test_domain_never_touches_the_database(self):
        violations = _violations(
            "tariff_kernel/domain",
            ("sqlalchemy", "tariff_kernel.db", "tariff_kernel.models", "tariff_kernel.services"),
        )
        assert not violations, "Domain imports persistence:\n" + "\n".join(violations)


class TestConfigDirection:

    def test_config_depends_on_kernel_only(self):
        violations = _violations(
            "tariff_config", ("tariff_engines", "tariff_services", "sqlalchemy")
        )
        assert not violations, "Config imports a forbidden layer:\n" + "\n".join(violations)
