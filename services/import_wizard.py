"""
ImportWizard - state machine driving one import from upload to result.

The wizard owns a single immutable WizardState snapshot and replaces it on
every transition. Callers read `state` and the derived views (stats,
errors, can_proceed, import_progress) and change it only through the named
actions. Listeners registered with subscribe() are told about each new
snapshot, which is how a UI renders live progress.

    upload --set_file--> upload --parse_file--> preview --validate_data--> preview
    preview --proceed_to_confirm--> confirm --execute_import--> progress --> result
    result --go_to_invitation_step--> invitation
    go_back(): preview -> upload, confirm -> preview; no-op elsewhere
    reset(): any step -> upload
"""

import logging
import time
from dataclasses import replace
from typing import Callable, List, Optional, Tuple

from services.import_constants import IMPORT_PHASES, ErrorMessages
from services.import_service import ImportService
from services.import_types import (
    CreatedContact,
    ErrorMode,
    ImportProgress,
    ImportResult,
    ImportStats,
    InvitationProgress,
    UploadedFile,
    ValidationError,
    WizardState,
    WizardStep,
)
from services.row_validator import RowValidator
from services.sheet_parser import SheetParser

logger = logging.getLogger(__name__)

StateListener = Callable[[WizardState], None]
InvitationSender = Callable[[CreatedContact], object]

BACK_TRANSITIONS = {
    WizardStep.PREVIEW: WizardStep.UPLOAD,
    WizardStep.CONFIRM: WizardStep.PREVIEW,
}


class ImportWizard:
    """Controller owning the WizardState of one import"""

    def __init__(self,
                 import_service_factory: Callable[[], ImportService],
                 parser: Optional[SheetParser] = None,
                 validator: Optional[RowValidator] = None,
                 invitation_sender: Optional[InvitationSender] = None,
                 error_mode: ErrorMode = ErrorMode.ALL_OR_NOTHING,
                 invitation_delay: float = 0.5,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            import_service_factory: Builds the ImportService used by execute_import
            parser: SheetParser, also used for the file size check
            validator: RowValidator
            invitation_sender: Called once per selected contact by send_invitations;
                a truthy return value (or successful Result) counts as sent
            error_mode: Error mode passed to the import
            invitation_delay: Pause between two invitations, in seconds
            sleep: Sleep function, replaced in tests
        """
        self.import_service_factory = import_service_factory
        self.parser = parser or SheetParser()
        self.validator = validator or RowValidator()
        self.invitation_sender = invitation_sender
        self.error_mode = ErrorMode.from_value(error_mode)
        self.invitation_delay = invitation_delay
        self.sleep = sleep
        self._state = WizardState()
        self._listeners: List[StateListener] = []

    # Read-only views

    @property
    def state(self) -> WizardState:
        return self._state

    @property
    def stats(self) -> Optional[ImportStats]:
        if self._state.parse_result is None:
            return None
        return ImportStats.from_parse_result(self._state.parse_result)

    @property
    def errors(self) -> Tuple[ValidationError, ...]:
        if self._state.validation_result is None:
            return ()
        return self._state.validation_result.errors

    @property
    def import_progress(self) -> Optional[ImportProgress]:
        return self._state.import_progress

    @property
    def invitable_contacts(self) -> Tuple[CreatedContact, ...]:
        return tuple(c for c in self._state.created_contacts if c.is_invitable)

    @property
    def can_proceed(self) -> bool:
        """Whether the current step's preconditions for moving forward are met"""
        state = self._state
        if state.is_loading:
            return False
        if state.step == WizardStep.UPLOAD:
            return state.file is not None
        if state.step in (WizardStep.PREVIEW, WizardStep.CONFIRM):
            stats = self.stats
            return (state.validation_result is not None
                    and state.validation_result.is_valid
                    and stats is not None
                    and stats.total > 0)
        if state.step == WizardStep.RESULT:
            return bool(state.import_result and state.import_result.success)
        if state.step == WizardStep.INVITATION:
            return bool(state.selected_contact_ids)
        return False

    @property
    def can_close(self) -> bool:
        """The wizard must not be dismissed while an import runs"""
        return self._state.step != WizardStep.PROGRESS

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it"""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    # Actions

    def set_file(self, file: Optional[UploadedFile]) -> None:
        """Select (or clear) the file; resets everything derived from a previous file"""
        if self._state.step != WizardStep.UPLOAD:
            logger.warning(f"set_file ignored in step {self._state.step.value}")
            return

        if file is not None:
            check = self.parser.check_file(file.filename, file.size)
            if check.is_failure:
                self._update(file=None, error=check.error, parse_result=None,
                             validation_result=None, import_result=None)
                return

        self._update(file=file, error=None, parse_result=None,
                     validation_result=None, import_result=None)

    def parse_file(self) -> None:
        """Parse the selected file and move to preview on success"""
        state = self._state
        if state.step != WizardStep.UPLOAD:
            return
        if state.file is None:
            self._update(error="No file selected")
            return

        self._update(is_loading=True, error=None)
        result = self.parser.parse(state.file.content, state.file.filename)
        if result.is_failure:
            self._update(is_loading=False, error=result.error)
            return

        stats = ImportStats.from_parse_result(result.data)
        if stats.total == 0:
            self._update(is_loading=False,
                         error="No data found in the file. Check the sheet names against the template")
            return

        self._update(is_loading=False, parse_result=result.data, validation_result=None,
                     step=WizardStep.PREVIEW)

    def validate_data(self) -> None:
        """Validate the parsed file; the step does not change"""
        state = self._state
        if state.step not in (WizardStep.PREVIEW, WizardStep.CONFIRM) or state.parse_result is None:
            return

        self._update(is_loading=True, error=None)
        validation_result = self.validator.validate_all(state.parse_result)
        error = None
        if not validation_result.is_valid:
            count = len(validation_result.errors)
            error = f"{count} error(s) found. Fix the file and upload it again"
        self._update(is_loading=False, validation_result=validation_result, error=error)

    def proceed_to_confirm(self) -> None:
        if self._state.step == WizardStep.PREVIEW and self.can_proceed:
            self._update(step=WizardStep.CONFIRM)

    def execute_import(self) -> None:
        """Run the import from the confirm step; always ends in the result step"""
        state = self._state
        if state.step != WizardStep.CONFIRM:
            return
        if not self.can_proceed:
            self._update(error="The file must be validated without errors before importing")
            return

        self._update(step=WizardStep.PROGRESS, is_loading=True, error=None,
                     import_result=None, import_progress=ImportProgress.not_started())

        filename = state.file.filename if state.file else state.parse_result.filename
        try:
            service = self.import_service_factory()
            result = service.execute(
                state.validation_result.data,
                error_mode=self.error_mode,
                filename=filename,
                progress_callback=self._on_progress,
            )
        except Exception as e:
            logger.exception(f"Import of {filename} failed: {e}")
            result = ImportResult(
                success=False,
                summary={phase.value: {'created': 0, 'updated': 0, 'failed': 0} for phase in IMPORT_PHASES},
                errors=(ValidationError(sheet='', row=0, message=ErrorMessages.unknown(str(e))),),
                error_mode=self.error_mode,
                fatal_error=str(e),
            )

        self._update(step=WizardStep.RESULT, is_loading=False, import_result=result,
                     import_progress=None, error=result.fatal_error)
        self.set_created_contacts(result.created_contacts)

    def go_back(self) -> None:
        previous = BACK_TRANSITIONS.get(self._state.step)
        if previous is None or self._state.is_loading:
            return
        self._update(step=previous, error=None)

    def reset(self) -> None:
        self._update_state(WizardState())

    # Invitations

    def go_to_invitation_step(self) -> None:
        if self._state.step == WizardStep.RESULT and self._state.import_result is not None:
            self._update(step=WizardStep.INVITATION)

    def set_created_contacts(self, contacts) -> None:
        """Store the created contacts and pre-select those that can be invited"""
        contacts = tuple(contacts)
        self._update(
            created_contacts=contacts,
            selected_contact_ids=tuple(c.id for c in contacts if c.is_invitable),
        )

    def toggle_contact_selection(self, contact_id: int) -> None:
        selected = self._state.selected_contact_ids
        if contact_id in selected:
            self._update(selected_contact_ids=tuple(i for i in selected if i != contact_id))
        elif any(c.id == contact_id and c.is_invitable for c in self._state.created_contacts):
            self._update(selected_contact_ids=selected + (contact_id,))

    def select_all_contacts(self) -> None:
        self._update(selected_contact_ids=tuple(c.id for c in self.invitable_contacts))

    def deselect_all_contacts(self) -> None:
        self._update(selected_contact_ids=())

    def send_invitations(self) -> InvitationProgress:
        """Invite the selected contacts one by one"""
        if self._state.step != WizardStep.INVITATION or self.invitation_sender is None:
            return self._state.invitation_progress or InvitationProgress()

        selected = set(self._state.selected_contact_ids)
        contacts = [c for c in self.invitable_contacts if c.id in selected]
        progress = InvitationProgress(total=len(contacts), is_processing=True)
        self._update(invitation_progress=progress)

        for index, contact in enumerate(contacts):
            progress = replace(progress, current_contact=contact.email)
            self._update(invitation_progress=progress)
            try:
                sent = bool(self.invitation_sender(contact))
            except Exception as e:
                logger.error(f"Invitation to {contact.email} failed: {e}")
                sent = False
            progress = replace(progress, sent=progress.sent + int(sent), failed=progress.failed + int(not sent))
            self._update(invitation_progress=progress)
            if index < len(contacts) - 1 and self.invitation_delay:
                self.sleep(self.invitation_delay)

        progress = replace(progress, is_processing=False, current_contact=None)
        self._update(invitation_progress=progress)
        return progress

    # Internals

    def _on_progress(self, progress: ImportProgress) -> None:
        current = self._state.import_progress
        if current is not None and progress.phase_index < current.phase_index:
            logger.warning("Ignoring out of order progress event")
            return
        self._update(import_progress=progress)

    def _update(self, **changes) -> None:
        self._update_state(replace(self._state, **changes))

    def _update_state(self, state: WizardState) -> None:
        self._state = state
        for listener in list(self._listeners):
            listener(state)
