"""Terminal coaching session (``sanad-chat``).

Commands: ``/finish`` asks for the assessment (after two answers), ``/restart``
begins a new session, ``/lang ar|en`` switches language, ``/quit`` exits.

On first use a short intake asks about the user's background; the answers are
kept in the local state file and go to the model with every turn.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, TextIO

from sanad_server.config import load_config

from reporting.pdf import render_pdf, report_filename
from reporting.view import build_report, render_text

from .controller import ConversationController, ConversationNotOpen, TurnOutcome
from .profile import FIELDS, QUESTIONS, Profile
from .prompts import normalize_language
from .state import LocalState
from .transport import ProxyTransport, create_transport

logger = logging.getLogger(__name__)

TEXT: Dict[str, Dict[str, str]] = {
    "en": {
        "help": "Commands: /finish, /restart, /lang ar|en, /quit",
        "finish_locked": "Share a little more first: answer at least {n} questions before finishing.",
        "closed": "This session is complete. Type /restart to begin again or /quit to exit.",
        "pdf_saved": "PDF report saved to {path}",
        "pdf_failed": "Could not write the PDF report: {error}",
        "bye": "Goodbye!",
        "unknown_command": "Unknown command {cmd}.",
        "intake_intro": "A few questions about your background first. Press Enter to skip one, or /skip to skip the rest.",
        "intake_step": "({i}/{n}) {question}",
    },
    "ar": {
        "help": "الأوامر: /finish ، /restart ، /lang ar|en ، /quit",
        "finish_locked": "شارك المزيد أولاً: أجب على {n} أسئلة على الأقل قبل الإنهاء.",
        "closed": "اكتملت هذه الجلسة. اكتب /restart للبدء من جديد أو /quit للخروج.",
        "pdf_saved": "تم حفظ تقرير PDF في {path}",
        "pdf_failed": "تعذّر حفظ تقرير PDF: {error}",
        "bye": "مع السلامة!",
        "unknown_command": "أمر غير معروف {cmd}.",
        "intake_intro": "بعض الأسئلة عن خلفيتك أولاً. اضغط Enter لتخطي سؤال، أو /skip لتخطي الباقي.",
        "intake_step": "({i}/{n}) {question}",
    },
}


class ChatSession:
    """Glue between the terminal, the controller and the local state file."""

    def __init__(
        self,
        cfg: Dict[str, Any],
        state: LocalState,
        *,
        language: str,
        api_key: Optional[str] = None,
        report_dir: Optional[Path] = None,
        write_pdf: bool = True,
        output: TextIO = sys.stdout,
    ) -> None:
        self.cfg = cfg
        self.state = state
        self.api_key = api_key
        self.report_dir = Path(report_dir or cfg.get("client", {}).get("report_dir") or ".")
        self.write_pdf = write_pdf
        self.output = output
        self._fresh_id = False
        self.profile = state.get_profile()
        self.controller = self._make_controller(language)

    # --------- setup ----------
    def _next_session_id(self) -> str:
        # Resume the stored id once; every later start gets a new one.
        if not self._fresh_id:
            self._fresh_id = True
            return self.state.get_session_id()
        return self.state.new_session_id()

    def _make_controller(self, language: str) -> ConversationController:
        coaching_cfg = self.cfg.get("coaching", {})
        transport = create_transport(self.cfg, api_key=self.api_key, session_id=self.state.get_session_id())
        return ConversationController(
            transport,
            language,
            min_user_turns=int(coaching_cfg.get("min_user_turns", 2)),
            test_passphrase=coaching_cfg.get("test_passphrase") or None,
            session_id_factory=self._next_session_id,
            profile=self.profile,
        )

    @property
    def language(self) -> str:
        return self.controller.language

    def say(self, text: str) -> None:
        print(text, file=self.output)

    def t(self, key: str, **kwargs: Any) -> str:
        return TEXT[self.language][key].format(**kwargs)

    # --------- flow ----------
    def run_intake(self, input_fn: Callable[[str], str]) -> Profile:
        """Ask the background questions one by one and store the answers."""
        questions = QUESTIONS[self.language]
        answers: Dict[str, str] = {}
        self.say(self.t("intake_intro"))
        for i, (key, _) in enumerate(FIELDS, 1):
            try:
                answer = input_fn(self.t("intake_step", i=i, n=len(FIELDS), question=questions[key]) + " ").strip()
            except EOFError:
                break
            if answer.lower() == "/skip":
                break
            answers[key] = answer

        self.profile = Profile.from_dict(answers)
        self.state.set_profile(self.profile)
        self.controller.profile = self.profile
        return self.profile

    def start(self) -> None:
        greeting = self.controller.start()
        if isinstance(self.controller.transport, ProxyTransport):
            self.controller.transport.session_id = self.controller.session_id
        self.say(f"\nSanad: {greeting.content}\n")
        self.say(self.t("help"))

    def restart(self, language: Optional[str] = None) -> None:
        if language:
            lang = normalize_language(language)
            self.state.set_language(lang)
            self.controller = self._make_controller(lang)
        self.start()

    def handle(self, line: str) -> bool:
        """Process one input line; returns False when the user quits."""
        text = line.strip()
        if not text:
            return True

        if text.startswith("/"):
            cmd, _, arg = text.partition(" ")
            cmd = cmd.lower()
            if cmd in ("/quit", "/exit"):
                self.say(self.t("bye"))
                return False
            if cmd == "/restart":
                self.restart()
            elif cmd == "/lang":
                self.restart(arg.strip() or ("en" if self.language == "ar" else "ar"))
            elif cmd == "/finish":
                self._finish()
            elif cmd == "/help":
                self.say(self.t("help"))
            else:
                self.say(self.t("unknown_command", cmd=cmd))
            return True

        try:
            outcome = self.controller.send(text)
        except ConversationNotOpen:
            self.say(self.t("closed"))
            return True
        self._show(outcome)
        return True

    def _finish(self) -> None:
        if self.controller.result is not None:
            self.say(self.t("closed"))
            return
        outcome = self.controller.finish()
        if not outcome.accepted:
            self.say(self.t("finish_locked", n=self.controller.min_user_turns))
            return
        self._show(outcome)

    def _show(self, outcome: TurnOutcome) -> None:
        if outcome.error is not None:
            self.say(f"! {outcome.user_message(self.language)}")
        elif outcome.reply is not None:
            self.say(f"\nSanad: {outcome.reply.content}\n")
        if outcome.result is not None:
            self.say("")
            self.say(render_text(build_report(outcome.result, self.language)))
            if self.write_pdf:
                self._save_pdf(outcome)
            self.say(self.t("closed"))

    def _save_pdf(self, outcome: TurnOutcome) -> Optional[Path]:
        path = self.report_dir / report_filename(self.language)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(render_pdf(outcome.result, self.language))
        except OSError as e:
            self.say(self.t("pdf_failed", error=e))
            return None
        self.say(self.t("pdf_saved", path=path))
        return path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to Sanad, the career coach, in your terminal.")
    parser.add_argument("--config", type=str, default=None, help="Path to a YAML config file")
    parser.add_argument("--lang", choices=["ar", "en"], default=None, help="Conversation language")
    parser.add_argument("--api-key", type=str, default=None, help="Gemini API key (stored locally)")
    parser.add_argument("--forget-key", action="store_true", help="Remove the stored API key and exit")
    parser.add_argument("--transport", choices=["gemini", "proxy"], default=None,
                        help="Call Gemini directly or go through the Sanad backend")
    parser.add_argument("--proxy-url", type=str, default=None, help="Backend URL for --transport proxy")
    parser.add_argument("--state-file", type=str, default=None, help="Where to keep local session state")
    parser.add_argument("--report-dir", type=str, default=None, help="Directory for the PDF report")
    parser.add_argument("--no-pdf", action="store_true", help="Do not write a PDF report")
    intake = parser.add_mutually_exclusive_group()
    intake.add_argument("--intake", action="store_true", help="Answer the background questions again")
    intake.add_argument("--no-intake", action="store_true", help="Skip the background questions")
    return parser


def main(
    argv: Optional[List[str]] = None,
    input_fn: Callable[[str], str] = input,
    output: TextIO = sys.stdout,
) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s [%(name)s] %(message)s")

    cfg = load_config(args.config)
    client_cfg = cfg.setdefault("client", {})
    if args.transport:
        client_cfg["transport"] = args.transport
    if args.proxy_url:
        client_cfg["proxy_url"] = args.proxy_url

    state = LocalState(args.state_file or client_cfg.get("state_file"))
    if args.forget_key:
        state.remove_api_key()
        return 0
    if args.api_key:
        state.set_api_key(args.api_key.strip())
    if args.lang:
        state.set_language(args.lang)

    session = ChatSession(
        cfg,
        state,
        language=state.get_language(),
        api_key=state.get_api_key() or None,
        report_dir=Path(args.report_dir) if args.report_dir else None,
        write_pdf=not args.no_pdf,
        output=output,
    )
    if args.intake or (not args.no_intake and session.profile is None):
        session.run_intake(input_fn)
    session.start()

    while True:
        try:
            line = input_fn("> ")
        except (EOFError, KeyboardInterrupt):
            session.say("")
            session.say(session.t("bye"))
            return 0
        if not session.handle(line):
            return 0


if __name__ == "__main__":
    sys.exit(main())
