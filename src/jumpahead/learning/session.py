# SPDX-FileCopyrightText: 2025 Mark Liffiton <liffiton@gmail.com>
#
# SPDX-License-Identifier: AGPL-3.0-only

""" Drive one student's work through one learning module.

A session starts (or resumes from the saved enrollment), then alternates
student turns and tutor turns.  Evaluations are requested explicitly and
merged with any previous evaluation, and the module is completed once the
average score reaches the completion threshold.  Saving is a separate,
explicit operation.
"""

import datetime as dt
import json
from dataclasses import dataclass, field
from typing import Any, Literal, TypeAlias

from flask import current_app

from jumpahead.db import StoreUnavailable
from jumpahead.llm import LLM, ChatMessage
from jumpahead.openai_client import OracleUnavailable

from . import prompts
from .data import (
    EnrollmentStatus,
    LearningModule,
    ModuleEnrollment,
    Turn,
    get_enrollment,
    get_module,
    mark_completed,
    mark_started,
    record_evaluation,
    save_enrollment,
)
from .evaluation import (
    CATEGORIES,
    COMPLETION_THRESHOLD,
    Evaluation,
    UnparseableScore,
    extract_average_score,
    merge_evaluations,
    parse_evaluation,
)
from .knowledge import DEFAULT_TIMEOUT, KnowledgeResult, fetch_knowledge_sources

SessionPhase: TypeAlias = Literal['uninitialized', 'loading', 'resuming', 'starting', 'active', 'evaluating', 'completed']
NoticeLevel: TypeAlias = Literal['success', 'info', 'warning', 'danger']


class AlreadyCompleted(Exception):
    def __init__(self) -> None:
        super().__init__("This module has already been completed.")


class EmptyInput(Exception):
    def __init__(self) -> None:
        super().__init__("Please enter a message.")


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    message: str


@dataclass
class SessionState:
    user_id: int
    module: LearningModule
    status: EnrollmentStatus
    turns: list[Turn] = field(default_factory=list)
    evaluation: Evaluation | None = None
    evaluation_text: str | None = None  # verbatim text; may be unparseable if loaded from an older save
    knowledge: KnowledgeResult = field(default_factory=lambda: KnowledgeResult(text=""))
    completed_at: dt.datetime | None = None
    saved: bool = False

    @property
    def is_completed(self) -> bool:
        return self.status == 'completed'

    def to_dict(self) -> dict[str, Any]:
        evaluation = None
        if self.evaluation is not None:
            evaluation = {
                'text': self.evaluation.text,
                'scores': self.evaluation.scores,
                'evidence': self.evaluation.evidence,
                'average': self.evaluation.average,
            }
        elif self.evaluation_text:
            evaluation = {'text': self.evaluation_text, 'average': extract_average_score(self.evaluation_text)}

        return {
            'module_id': self.module.id,
            'title': self.module.title,
            'status': self.status,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'turns': [turn.to_dict() for turn in self.turns],
            'evaluation': evaluation,
            'knowledge_sources': {'loaded': self.knowledge.loaded, 'failed': self.knowledge.failed},
            'saved': self.saved,
        }


def _live_sessions() -> dict[tuple[int, int], SessionState]:
    sessions: dict[tuple[int, int], SessionState] = current_app.extensions.setdefault('learning_sessions', {})
    return sessions


def get_live_state(user_id: int, module_id: int) -> SessionState | None:
    """ The in-memory state of a session already running in this process, if any. """
    return _live_sessions().get((user_id, module_id))


def store_live_state(state: SessionState) -> None:
    _live_sessions()[(state.user_id, state.module.id)] = state


def drop_live_state(user_id: int, module_id: int) -> None:
    _live_sessions().pop((user_id, module_id), None)


def drop_live_states(module_id: int) -> None:
    """ Forget every live session on a module (e.g., after the module is edited). """
    sessions = _live_sessions()
    for key in [key for key in sessions if key[1] == module_id]:
        del sessions[key]


class SessionController:
    def __init__(self, llm: LLM, user_id: int, module_id: int, state: SessionState | None = None):
        self._llm = llm
        self.user_id = user_id
        self.module_id = module_id
        self.notices: list[Notice] = []
        self._state = state
        if state is None:
            self.phase: SessionPhase = 'uninitialized'
        else:
            self.phase = 'completed' if state.is_completed else 'active'

    @property
    def state(self) -> SessionState:
        if self._state is None:
            raise RuntimeError("Session has not been loaded.")
        return self._state

    def notify(self, level: NoticeLevel, message: str) -> None:
        self.notices.append(Notice(level, message))

    def _completion_threshold(self) -> float:
        return float(current_app.config.get('COMPLETION_THRESHOLD', COMPLETION_THRESHOLD))

    ####################
    ### Session load ###
    ####################

    async def load_session(self) -> SessionState:
        """ Resume the saved session or start a new one.

        Raises NotFound if the module does not exist (or StoreUnavailable if
        it cannot be read at all).
        """
        self.phase = 'loading'
        module = get_module(self.module_id)

        try:
            enrollment = get_enrollment(self.user_id, self.module_id)
        except StoreUnavailable:
            self.notify('danger', "Failed to retrieve saved session.")
            enrollment = None

        knowledge = await self._load_knowledge(module)

        if enrollment and enrollment.status != 'not_started' and enrollment.saved_chat_history:
            self.phase = 'resuming'
            state = self._resume(module, enrollment, knowledge)
        else:
            self.phase = 'starting'
            state = await self._start(module, enrollment, knowledge)

        self._state = state
        self.phase = 'completed' if state.is_completed else 'active'
        return state

    async def _load_knowledge(self, module: LearningModule) -> KnowledgeResult:
        if not module.knowledge_sources:
            return KnowledgeResult(text="")

        timeout = float(current_app.config.get('KNOWLEDGE_FETCH_TIMEOUT', DEFAULT_TIMEOUT))
        knowledge = await fetch_knowledge_sources(module.knowledge_sources, timeout=timeout)
        if knowledge.failed:
            self.notify('warning', f"{len(knowledge.failed)} knowledge source(s) failed to load.")
        return knowledge

    def _resume(self, module: LearningModule, enrollment: ModuleEnrollment, knowledge: KnowledgeResult) -> SessionState:
        evaluation = None
        if enrollment.saved_evaluation:
            try:
                evaluation = parse_evaluation(enrollment.saved_evaluation)
            except UnparseableScore as e:
                current_app.logger.warning(f"Saved evaluation for user {self.user_id}, module {self.module_id} is unparseable: {e}")

        if enrollment.status == 'started':
            self.notify('success', "Resumed your saved session.")

        return SessionState(
            user_id=self.user_id,
            module=module,
            status=enrollment.status,
            turns=list(enrollment.saved_chat_history),
            evaluation=evaluation,
            evaluation_text=enrollment.saved_evaluation,
            knowledge=knowledge,
            completed_at=enrollment.completed_at,
            saved=True,
        )

    async def _start(self, module: LearningModule, enrollment: ModuleEnrollment | None, knowledge: KnowledgeResult) -> SessionState:
        status: EnrollmentStatus = 'started'
        if enrollment and enrollment.status == 'completed':
            status = 'completed'
        else:
            try:
                mark_started(self.user_id, self.module_id)
            except StoreUnavailable:
                self.notify('danger', "Failed to update session status.")

        opening = await self._opening_turn(module)

        return SessionState(
            user_id=self.user_id,
            module=module,
            status=status,
            turns=[opening],
            evaluation=None,
            evaluation_text=None,
            knowledge=knowledge,
            completed_at=enrollment.completed_at if enrollment else None,
        )

    async def _opening_turn(self, module: LearningModule) -> Turn:
        messages: list[ChatMessage] = [
            {'role': 'system', 'content': prompts.open_sys_msg},
            {'role': 'user', 'content': prompts.open_prompt_tpl.render(description=module.description)},
        ]
        try:
            _response, overview = await self._llm.get_completion(messages=messages, extra_args=prompts.OPEN_ARGS)
        except OracleUnavailable as e:
            self.notify('danger', f"Failed to generate session overview.  {e}")
            overview = ""

        return Turn.assistant(overview or prompts.FALLBACK_GREETING)

    #####################
    ### Student turns ###
    #####################

    async def send_message(self, text: str, image_url: str | None = None) -> Turn:
        """ Add a student turn and the tutor's reply to it.

        Returns the tutor's turn (a fallback apology if the tutor could not
        be reached).  Raises AlreadyCompleted or EmptyInput for rejected input.
        """
        state = self.state
        if state.is_completed:
            raise AlreadyCompleted
        if not text.strip():
            raise EmptyInput

        history = list(state.turns)
        student_turn = Turn.student(text, image_url=image_url)
        state.turns = [*history, student_turn]

        messages: list[ChatMessage] = [
            {'role': 'system', 'content': self._tutor_system_prompt(history)},
            {'role': 'user', 'content': self._user_content(student_turn)},  # type: ignore[typeddict-item]
        ]
        try:
            _response, reply = await self._llm.get_completion(messages=messages, extra_args=prompts.TUTOR_ARGS)
        except OracleUnavailable as e:
            self.notify('danger', f"Failed to process your response.  {e}")
            reply = ""

        tutor_turn = Turn.assistant(reply or prompts.FALLBACK_REPLY)
        state.turns = [*history, student_turn, tutor_turn]
        state.saved = False
        return tutor_turn

    def _tutor_system_prompt(self, history: list[Turn]) -> str:
        state = self.state
        return prompts.tutor_sys_msg_tpl.render(
            description=state.module.description,
            chat_history=json.dumps([turn.to_dict() for turn in history]),
            evaluation=state.evaluation_text,
            knowledge=state.knowledge.text,
            threshold=self._completion_threshold(),
            categories=CATEGORIES,
        )

    @staticmethod
    def _user_content(turn: Turn) -> str | list[dict[str, Any]]:
        if not turn.image_url:
            return turn.content
        return [
            {'type': 'text', 'text': turn.content},
            {'type': 'image_url', 'image_url': {'url': turn.image_url}},
        ]

    ##################
    ### Evaluation ###
    ##################

    def _exchange_to_evaluate(self) -> tuple[Turn, Turn] | None:
        """ The most recent student turn and the tutor turn just before it. """
        turns = self.state.turns
        student_index = next((i for i in range(len(turns) - 1, -1, -1) if turns[i].role == 'student'), None)
        if student_index is None:
            return None

        tutor_turn = next((turns[i] for i in range(student_index - 1, -1, -1) if turns[i].role == 'assistant'), None)
        if tutor_turn is None and turns[0].role == 'assistant':
            tutor_turn = turns[0]
        if tutor_turn is None:
            tutor_turn = Turn.assistant(prompts.DEFAULT_TUTOR_PROMPT)

        return tutor_turn, turns[student_index]

    def _rubric_format(self, evidence_hint: str, average_hint: str) -> str:
        return prompts.rubric_format_tpl.render(categories=CATEGORIES, evidence_hint=evidence_hint, average_hint=average_hint)

    async def evaluate(self) -> Evaluation | None:
        """ Score the latest exchange and fold it into the current evaluation.

        Returns the new current evaluation, or None if evaluation failed (in
        which case the previous evaluation is unchanged).
        """
        state = self.state
        exchange = self._exchange_to_evaluate()
        if exchange is None:
            self.notify('warning', "No student message found to evaluate!")
            return None

        prev_phase = self.phase
        self.phase = 'evaluating'
        try:
            latest = await self._score_exchange(*exchange)
            if latest is None:
                return None

            if state.evaluation is None:
                if state.evaluation_text:
                    current_app.logger.warning(f"Replacing unparseable evaluation for user {self.user_id}, module {self.module_id}.")
                new_evaluation = latest
            else:
                merged = await self._merge(state.evaluation, latest)
                if merged is None:
                    return None
                new_evaluation = merged
        finally:
            self.phase = prev_phase

        state.evaluation = new_evaluation
        state.evaluation_text = new_evaluation.text
        state.saved = False

        self._record(new_evaluation)
        self._check_completion(new_evaluation)
        self.notify('success', "Evaluation completed.")
        return new_evaluation

    async def _score_exchange(self, tutor_turn: Turn, student_turn: Turn) -> Evaluation | None:
        prompt = prompts.evaluate_prompt_tpl.render(
            description=self.state.module.description,
            tutor_turn=tutor_turn.content,
            student_turn=student_turn.content,
            rubric_format=self._rubric_format("[specific evidence from student's response]", "[average of all scores, with one decimal place]"),
        )
        try:
            _response, text = await self._llm.get_completion(
                messages=[{'role': 'system', 'content': prompt}],
                extra_args=prompts.EVALUATE_ARGS,
            )
        except OracleUnavailable as e:
            self.notify('danger', f"Failed to evaluate response.  {e}")
            return None

        try:
            return parse_evaluation(text)
        except UnparseableScore as e:
            current_app.logger.error(f"Failed to parse evaluation from LLM. Error: {e}. Response: {text}")
            self.notify('danger', "Failed to evaluate response: the evaluation could not be read.  Please try again.")
            return None

    async def _merge(self, current: Evaluation, latest: Evaluation) -> Evaluation | None:
        prompt = prompts.merge_prompt_tpl.render(
            current=current.text,
            latest=latest.text,
            categories=CATEGORIES,
            rubric_format=self._rubric_format("evidence text", "[calculated average with one decimal place]"),
        )
        try:
            _response, text = await self._llm.get_completion(
                messages=[{'role': 'system', 'content': prompt}],
                extra_args=prompts.MERGE_ARGS,
            )
        except OracleUnavailable as e:
            self.notify('danger', f"Failed to update evaluation.  {e}")
            return None

        # The merge must equal the per-category maximum; keep the model's wording only when it does.
        expected = merge_evaluations(current, latest)
        try:
            merged = parse_evaluation(text)
        except UnparseableScore as e:
            current_app.logger.warning(f"Unparseable merged evaluation ({e}); using per-category maximum instead. Response: {text}")
            return expected

        if merged.scores != expected.scores or merged.average != expected.average:
            current_app.logger.warning(f"Merged evaluation disagrees with per-category maximum ({merged.score_list} avg {merged.average} vs. {expected.score_list} avg {expected.average}); using the maximum.")
            return expected

        return merged

    def _record(self, evaluation: Evaluation) -> None:
        avg_score = extract_average_score(evaluation.text)
        if avg_score is None:
            return
        try:
            record_evaluation(self.user_id, self.module_id, evaluation.text, avg_score)
        except StoreUnavailable:
            self.notify('danger', "Failed to save the evaluation.  Use Save to try again.")

    def _check_completion(self, evaluation: Evaluation) -> None:
        """ Complete the module if the average score meets the threshold.  One-way. """
        state = self.state
        if state.is_completed:
            return

        avg_score = extract_average_score(evaluation.text)
        if avg_score is None or avg_score < self._completion_threshold():
            return

        completed_at = dt.datetime.now(dt.UTC)
        try:
            mark_completed(self.user_id, self.module_id, avg_score, completed_at)
        except StoreUnavailable:
            self.notify('danger', "Failed to record module completion.")
            return

        state.status = 'completed'
        state.completed_at = completed_at
        self.phase = 'completed'
        current_app.logger.info(f"Module {self.module_id} completed by user {self.user_id} (average score {avg_score})")
        self.notify('success', "You've completed this module!")

    ############
    ### Save ###
    ############

    def save(self) -> bool:
        """ Persist turns, evaluation, average score, and status in one upsert. """
        state = self.state
        status: EnrollmentStatus = 'completed' if state.is_completed else 'started'
        try:
            save_enrollment(
                self.user_id,
                self.module_id,
                turns=state.turns,
                evaluation=state.evaluation_text,
                avg_score=extract_average_score(state.evaluation_text),
                status=status,
            )
        except StoreUnavailable:
            self.notify('danger', "Failed to save session.")
            return False

        state.saved = True
        self.notify('success', "Session saved successfully.")
        return True
