from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

from .config import configure_logging, get_data_dir, open_store
from .content import FileExtractor, extract_stream
from .summaries import (
    AvailabilityError,
    GatewayError,
    Library,
    PromptLoader,
    PromptValidationError,
    ProviderId,
    SummaryService,
    UnknownProviderError,
    write_article,
)

T = TypeVar("T")

PROVIDER_CHOICES = [provider.value for provider in ProviderId]
NETWORK_PROVIDER_CHOICES = [provider.value for provider in ProviderId if provider is not ProviderId.ON_DEVICE]


def create_service(data_dir: Path) -> SummaryService:
    return SummaryService(open_store(data_dir))


def run_with_service(data_dir: Path, action: Callable[[SummaryService], Awaitable[T]]) -> T:
    """Run ``action`` on a fresh service inside one event loop, closing it afterwards."""

    async def runner() -> T:
        service = create_service(data_dir)
        try:
            return await action(service)
        finally:
            await service.aclose()

    return asyncio.run(runner())


def handle_summarize(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    if args.input == "-":
        extracted = extract_stream(sys.stdin)
    else:
        extracted = FileExtractor().extract(args.input)
    if not extracted.ok:
        parser.error(extracted.error or "Failed to extract content")
        return 2

    custom_prompt: Optional[str] = None
    if args.prompt_file:
        try:
            custom_prompt = PromptLoader().load(args.prompt_file).content
        except (FileNotFoundError, PromptValidationError) as exc:
            parser.error(str(exc))
            return 2

    async def action(service: SummaryService) -> str:
        request = service.build_request(
            extracted.content,
            provider=args.provider,
            model=args.model,
            language=args.language,
            custom_prompt=custom_prompt,
        )

        def write(fragment: str) -> None:
            sys.stdout.write(fragment)
            sys.stdout.flush()

        record = await service.summarize(request, args.provider, on_fragment=write)
        if record.body and not record.body.endswith("\n"):
            sys.stdout.write("\n")
        if args.save:
            article = service.save(args.url or str(args.input), extracted.title, record.body)
            print(f"[saved] {article.id} {article.title}", file=sys.stderr)
        return record.body

    try:
        run_with_service(data_dir, action)
    except AvailabilityError as exc:
        parser.error(f"{exc} ({exc.availability.value})")
        return 2
    except GatewayError as exc:
        parser.error(str(exc))
        return 2
    return 0


def handle_models(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    async def action(service: SummaryService) -> list:
        provider = args.provider or service.settings.provider
        if args.models_cmd == "refresh":
            credential = args.key or service.settings.credential_for(service.registry.get(provider).id)
            if not await service.catalog.refresh(provider, credential):
                print(f"Refresh failed for {provider}; keeping cached list.", file=sys.stderr)
        return service.models(provider)

    try:
        models = run_with_service(data_dir, action)
    except UnknownProviderError as exc:
        parser.error(str(exc))
        return 2
    for model in models:
        print(model)
    return 0


def handle_keys_set(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    async def action(service: SummaryService) -> Optional[bool]:
        pending = service.set_credential(args.provider, args.key)
        if pending is None or args.no_refresh:
            return None
        return await pending

    refreshed = run_with_service(data_dir, action)
    if refreshed is None:
        print(f"Stored key for {args.provider}.")
    elif refreshed:
        print(f"Stored key for {args.provider} and refreshed its models.")
    else:
        print(f"Stored key for {args.provider}; model refresh failed.", file=sys.stderr)
    return 0


def handle_verify(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    async def action(service: SummaryService):
        return await service.verify_key(args.provider, args.key)

    try:
        result = run_with_service(data_dir, action)
    except GatewayError as exc:
        parser.error(f"Verification failed: {exc}")
        return 2
    print(f"Verified {result.provider}: {len(result.models)} model(s); selected {result.selected_model}")
    return 0


def handle_availability(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    async def action(service: SummaryService):
        return await service.probe_on_device()

    state = run_with_service(data_dir, action)
    print(state.value)
    return 0


def handle_library(args: argparse.Namespace, parser: argparse.ArgumentParser, data_dir: Path) -> int:
    library = Library(open_store(data_dir))

    if args.library_cmd == "list":
        articles = library.items()
        if not articles:
            print("Library is empty.")
        for article in articles:
            print(f"{article.id}  {article.saved_at}  {article.title}  <{article.url}>")
        return 0

    if args.library_cmd == "delete":
        if not library.delete(args.id):
            parser.error(f"No saved article with id {args.id}")
            return 2
        print(f"Deleted {args.id}")
        return 0

    if args.library_cmd == "export":
        article = library.get(args.id)
        if article is None:
            parser.error(f"No saved article with id {args.id}")
            return 2
        target = args.output or Path.cwd() / f"{article.id}.md"
        write_article(target, article)
        print(f"Wrote {target}")
        return 0

    parser.error("Unknown library subcommand")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vibe-capsule",
        description="Stream summaries of text from OpenAI, Anthropic, Gemini or an on-device model.",
    )
    p.add_argument(
        "--data-dir",
        type=Path,
        help="Directory holding settings, cached models and the library (default: ~/.vibe-capsule)",
    )
    p.add_argument(
        "--log-level",
        help="Logging level (default: $VIBE_CAPSULE_LOG_LEVEL or WARNING)",
    )

    sub = p.add_subparsers(dest="cmd", required=True)

    p_sum = sub.add_parser("summarize", help="Stream a summary of a text file or stdin")
    p_sum.add_argument("input", nargs="?", default="-", help="Text or Markdown file to summarize (default: stdin)")
    p_sum.add_argument("--provider", choices=PROVIDER_CHOICES, help="Provider to use (default: selected provider)")
    p_sum.add_argument("--model", help="Model identifier (default: selected or first cached model)")
    p_sum.add_argument("--language", help="Summary language tag (default: system locale)")
    p_sum.add_argument("--prompt-file", type=Path, help="Custom prompt template; {{LANGUAGE}} is substituted")
    p_sum.add_argument("--save", action="store_true", help="Save the article and summary to the library when done")
    p_sum.add_argument("--url", help="URL recorded with --save (default: the input path)")

    p_models = sub.add_parser("models", help="Show or refresh cached model lists")
    models_sub = p_models.add_subparsers(dest="models_cmd", required=True)
    for name, help_text in (("list", "Print cached models or defaults"), ("refresh", "Re-discover models now")):
        p_m = models_sub.add_parser(name, help=help_text)
        p_m.add_argument("--provider", choices=PROVIDER_CHOICES)
        if name == "refresh":
            p_m.add_argument("--key", help="Credential to use instead of the stored one")

    p_keys = sub.add_parser("keys", help="Manage provider credentials")
    keys_sub = p_keys.add_subparsers(dest="keys_cmd", required=True)
    p_set = keys_sub.add_parser("set", help="Store a key and refresh its models after it settles")
    p_set.add_argument("provider", choices=NETWORK_PROVIDER_CHOICES)
    p_set.add_argument("key")
    p_set.add_argument("--no-refresh", action="store_true", help="Do not wait for the model refresh")

    p_verify = sub.add_parser("verify", help="Verify a key, then select the provider and its best model")
    p_verify.add_argument("provider", choices=NETWORK_PROVIDER_CHOICES)
    p_verify.add_argument("--key", help="Credential to verify instead of the stored one")

    sub.add_parser(
        "availability",
        help="Report on-device model availability (always API_MISSING unless a front end supplies a local engine)",
    )

    p_library = sub.add_parser("library", help="Saved articles")
    library_sub = p_library.add_subparsers(dest="library_cmd", required=True)
    library_sub.add_parser("list", help="List saved articles, newest first")
    p_delete = library_sub.add_parser("delete", help="Delete a saved article")
    p_delete.add_argument("id")
    p_export = library_sub.add_parser("export", help="Export a saved article as Markdown")
    p_export.add_argument("id")
    p_export.add_argument("-o", "--output", type=Path, help="Output path (default: <cwd>/<id>.md)")

    return p


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    data_dir: Path = (args.data_dir or get_data_dir()).expanduser()

    if args.cmd == "summarize":
        return handle_summarize(args, parser, data_dir)
    if args.cmd == "models":
        return handle_models(args, parser, data_dir)
    if args.cmd == "keys":
        return handle_keys_set(args, parser, data_dir)
    if args.cmd == "verify":
        return handle_verify(args, parser, data_dir)
    if args.cmd == "availability":
        return handle_availability(args, parser, data_dir)
    if args.cmd == "library":
        return handle_library(args, parser, data_dir)

    parser.error("Unknown command")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
