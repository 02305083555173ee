from __future__ import annotations

import argparse
import json
import logging
from dataclasses import replace

from memory_engine.app.settings import AppSettings
from memory_engine.app.wiring import EngineBundle, build_bundle
from memory_engine.domain.errors import MemoryEngineError

HELP = (
    "Memory: /memory | /search <query> | /forget <id> | /remember <fact>\n"
    "Notes:  /note <text> | /notes\n"
    "Type /exit to quit.\n"
)


def _print_items(bundle: EngineBundle, namespace: str) -> None:
    assert bundle.store is not None
    items = bundle.store.list_items(namespace)
    if not items:
        print("bot> (memory empty)\n")
        return
    items.sort(key=lambda it: (it.importance, it.updated_at), reverse=True)
    print("bot> memory:")
    for it in items:
        print(f"  {it.id} | {it.content} (importance={it.importance:.2f})")
    print()


def handle_command(bundle: EngineBundle, namespace: str, text: str) -> bool:
    """Команды REPL. True -> команда обработана, в модель не идёт."""
    cmd, _, arg = text.partition(" ")
    arg = arg.strip()

    if cmd == "/notes":
        ctx = bundle.notes.get_memory_context()
        print(f"bot> {ctx or '(no notes)'}\n")
        return True
    if cmd == "/note":
        if not arg:
            print("bot> usage: /note <text>\n")
        else:
            bundle.notes.append_today(arg)
            print(f"bot> noted in {bundle.notes.today_file().name}\n")
        return True

    if cmd not in {"/memory", "/search", "/forget", "/remember"}:
        return False
    if bundle.store is None:
        print("bot> vector memory is disabled\n")
        return True

    if cmd == "/memory":
        _print_items(bundle, namespace)
    elif cmd == "/search":
        hits = bundle.store.search(arg, 5, 0.0, namespace)
        if not hits:
            print("bot> nothing found\n")
        else:
            print("bot> matches:")
            for it, score in hits:
                print(f"  {score:.3f} | {it.id} | {it.content}")
            print()
    elif cmd == "/forget":
        ok = bundle.store.delete(arg, namespace)
        print(f"bot> forget: {'ok' if ok else 'not found'}\n")
    elif cmd == "/remember":
        if not arg:
            print("bot> usage: /remember <fact>\n")
            return True
        item_id = bundle.store.add(arg, {"importance": 0.8, "source": "manual"}, namespace)
        print(f"bot> remembered as {item_id}\n")
    return True


def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--cid", required=True, help="Conversation id (also the memory namespace)")
    parser.add_argument("--debug", action="store_true")

    parser.add_argument("--workspace", default=None, help="Override workspace dir")
    parser.add_argument("--llm", choices=["mock", "ollama", "openai"], default=None)
    parser.add_argument("--embedder", choices=["hash", "sbert", "openai"], default=None)
    parser.add_argument("--extraction-interval", type=int, default=None)
    parser.add_argument("--compaction-threshold", type=int, default=None)
    parser.add_argument("--no-notes", action="store_true")
    parser.add_argument("--no-vector", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    settings = AppSettings.from_env()

    if args.workspace is not None:
        settings = replace(settings, workspace_dir=args.workspace)

    prov = settings.provider
    if args.llm is not None:
        prov = replace(prov, llm_backend=args.llm)
    if args.embedder is not None:
        prov = replace(prov, embedder_backend=args.embedder)

    mem = settings.memory
    if args.extraction_interval is not None:
        mem = replace(mem, extraction_interval=args.extraction_interval)
    if args.no_notes:
        mem = replace(mem, notes_enabled=False)
    if args.no_vector:
        mem = replace(mem, vector_enabled=False)

    comp = settings.compaction
    if args.compaction_threshold is not None:
        comp = replace(comp, threshold=args.compaction_threshold)
    settings = replace(settings, provider=prov, memory=mem, compaction=comp)

    bundle = build_bundle(settings)
    engine = bundle.engine

    print(f"Conversation: {args.cid}")
    print(HELP)

    while True:
        try:
            user_text = input("you> ").strip()
        except (EOFError, KeyboardInterrupt):
            print()
            break
        if not user_text:
            continue
        if user_text == "/exit":
            break

        if user_text.startswith("/"):
            try:
                if handle_command(bundle, args.cid, user_text):
                    continue
            except (MemoryEngineError, ValueError) as e:
                print(f"bot> error: {e}\n")
                continue

        answer, meta = engine.handle_user_message_ex(args.cid, user_text)
        print(f"bot> {answer}\n")

        if args.debug:
            print("debug> " + json.dumps(meta, ensure_ascii=False, indent=2, default=str) + "\n")


if __name__ == "__main__":
    main()
