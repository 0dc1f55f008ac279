import ast
import difflib
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from builder import TreeRegistry
from encoding import ENCODING_VERSION, NodeRecord, TreeEncoder
from errors import OptimizerError
from ir import Module
from optimizer import OPT_DECORATORS, CipherOptimizer
from parser import FunctionExtractor, unparse_function
from symbolic import verify_function

app = typer.Typer()
console = Console()


def configure_logging(verbose: bool):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def splice_functions(tree: ast.Module, replacements: dict) -> ast.Module:
    """
    Swap the bodies of top-level functions for the re-parsed optimized ones.
    Signature, decorators and docstring stay as written.
    """
    for node in tree.body:
        if isinstance(node, ast.FunctionDef) and node.name in replacements:
            body = ast.parse(replacements[node.name]).body[0].body
            docstring = node.body[:1] if ast.get_docstring(node) is not None else []
            node.body = docstring + body
    return tree


def encoding_table(function, module: Module, oracle) -> Table:
    registry = TreeRegistry()
    registry.parse_series(function)
    records = TreeEncoder(module, oracle).encode_registry(registry, function.params[1:])

    table = Table(title=f"{function.name} tree encoding", caption=f"encoding v{ENCODING_VERSION}")
    for field in NodeRecord._fields:
        table.add_column(field)
    for record in records:
        table.add_row(*(str(v) for v in record))
    return table


def process_file(path: Path, options: dict, inplace: bool, show_diff: bool, encode: bool, verify: bool) -> int:
    """
    1) Lower the selected functions of the source into IR
    2) Run the expression-tree pipeline on each of them
    3) Optionally print tree encodings and check equivalence with SymPy
    4) Either overwrite or show unified diff/raw code
    Returns the number of functions that failed.
    """
    src = path.read_text()
    module = Module()
    optimizer = CipherOptimizer(module=module, **options)

    # 1) Lowering
    decorators = None if options.get("all_functions") else OPT_DECORATORS
    extractor = FunctionExtractor(module, optimizer.resolver, decorators)
    tree, functions = extractor.extract(src)
    failures = len(extractor.skipped)
    for name, error in extractor.skipped.items():
        console.print(f"[yellow]Skipped {name}:[/yellow] {escape(str(error))}")

    # 2) Optimization
    optimized, errors = optimizer.optimize_functions(functions)
    failures += len(errors)
    for name, error in errors.items():
        console.print(f"[red]Could not optimize {name}:[/red] {escape(str(error))}")

    # 3) Encoding / verification
    if encode:
        for function in functions:
            try:
                console.print(encoding_table(function, module, optimizer.oracle))
            except OptimizerError as e:
                console.print(f"[red]Could not encode {function.name}:[/red] {escape(str(e))}")
                failures += 1
    if verify:
        for before, after in zip(functions, optimized):
            if before is after:
                continue
            mismatched = verify_function(before, after)
            if mismatched:
                failures += 1
                console.print(f"[red]✗ {after.name}[/red] changed: {', '.join(mismatched)}")
            else:
                console.print(f"[green]✓ {after.name}[/green] equivalent")

    # 4) Output
    full_src = ast.unparse(tree)
    replacements = {
        after.name: unparse_function(after)
        for before, after in zip(functions, optimized)
        if before is not after
    }
    optimized_src = ast.unparse(splice_functions(tree, replacements))

    if inplace:
        path.write_text(optimized_src)
        console.print(f"✅ Updated: {path}")
        return failures

    if show_diff:
        diff_txt = "".join(difflib.unified_diff(
            (full_src + "\n").splitlines(keepends=True),
            (optimized_src + "\n").splitlines(keepends=True),
            fromfile=str(path),
            tofile="optimized",
        ))
        body = Text(diff_txt) if diff_txt else Text("No changes", style="italic")
        console.print(Panel(body, title=str(path), border_style="blue"))
    else:
        console.print(Panel(Text(optimized_src), title=str(path), border_style="green"))

    if optimizer.stats:
        summary = ", ".join(f"{k}: {v}" for k, v in sorted(optimizer.stats.items()))
        console.print(f"[dim]{summary}[/dim]")
    return failures


@app.command()
def main(
    target: Path = typer.Argument(
        ..., exists=True, file_okay=True, dir_okay=True,
        help="File or directory to process"
    ),
    expand_pows: bool = typer.Option(
        True, "--expand-pows/--no-expand-pows",
        help="Expand integer powers into multiplications"
    ),
    factorize: bool = typer.Option(
        True, "--factorize/--no-factorize",
        help="Factor common multiplicands out of sums"
    ),
    reorder: bool = typer.Option(
        True, "--reorder/--no-reorder",
        help="Combine cheap operands before expensive ones"
    ),
    matmul: bool = typer.Option(
        True, "--matmul/--no-matmul",
        help="Replace chains of matrix multiplications with a reordering call"
    ),
    all_functions: bool = typer.Option(
        False, "--all",
        help="Optimize every function, not only decorated ones"
    ),
    encode: bool = typer.Option(
        False, "--encode",
        help="Print the tree encoding of each function"
    ),
    verify: bool = typer.Option(
        False, "--verify",
        help="Check with SymPy that every optimized function computes the same values"
    ),
    inplace: bool = typer.Option(
        False, "--inplace",
        help="Overwrite source files in place"
    ),
    recursive: bool = typer.Option(
        False, "--recursive",
        help="When target is a directory, recurse into subfolders"
    ),
    diff: bool = typer.Option(
        True, "--diff/--no-diff",
        help="Show unified diff instead of raw code"
    ),
    strict: bool = typer.Option(
        False, "--strict",
        help="Exit with status 1 if any function could not be optimized"
    ),
    verbose: bool = typer.Option(
        False, "-v", "--verbose",
        help="Log every rewrite"
    ),
):
    """
    Lower the cost of secure arithmetic in FILE or all .py under a directory.
    """
    configure_logging(verbose)
    options = dict(
        expand_pows=expand_pows,
        factorize=factorize,
        reorder=reorder,
        reorder_matmuls=matmul,
        all_functions=all_functions,
    )

    paths = ([target] if target.is_file()
             else sorted(target.glob("**/*.py") if recursive else target.glob("*.py")))
    failures = 0
    for path in paths:
        failures += process_file(path, options, inplace, diff, encode, verify)

    if strict and failures:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
