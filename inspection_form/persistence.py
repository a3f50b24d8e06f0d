"""
Inspection draft and submission persistence.

JSON files for restart resilience (draft) and a local record of what was
handed over at submission.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_DRAFT_PATH = "outputs/drafts/inspection-draft.json"
DEFAULT_SUBMISSIONS_DIR = "outputs/submissions"


class DraftStore:
    """
    Best-effort mirror of the in-progress inspection state.

    Layout:
        outputs/drafts/inspection-draft.json

    Design:
    - One file, overwritten on every transition
    - Every failure is logged and swallowed: a broken disk never breaks
      the form, it only loses the draft
    """

    def __init__(self, path: str = DEFAULT_DRAFT_PATH):
        self.path = Path(path)
        logger.info(f"DraftStore initialized: {self.path}")

    def load(self) -> Optional[Dict[str, Any]]:
        """
        Load the saved draft.

        Returns:
            dict if a readable draft exists, None otherwise
        """
        if not self.path.exists():
            return None

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read draft {self.path}: {e}")
            return None

        if not isinstance(data, dict):
            logger.warning(f"Ignoring draft {self.path}: top level is not an object")
            return None
        return data

    def save(self, state: Dict[str, Any]) -> bool:
        """
        Overwrite the draft with state.

        Returns:
            bool: True if written
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps(state, indent=2, ensure_ascii=False)
            with open(self.path, 'w', encoding='utf-8') as f:
                f.write(payload)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Could not save draft {self.path}: {e}")
            return False

        logger.debug(f"Draft saved: {self.path}")
        return True

    def clear(self) -> None:
        try:
            self.path.unlink()
            logger.info(f"Draft cleared: {self.path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not clear draft {self.path}: {e}")

    def exists(self) -> bool:
        return self.path.exists()


class SubmissionArchive:
    """
    Local submission consumer: one JSON file per submitted inspection.

    Layout:
        outputs/submissions/INSP-a3f7e2b9.json

    Unlike the draft, writes here are not best-effort: a failed write
    means the submission did not happen, so errors propagate.
    """

    def __init__(self, base_dir: str = DEFAULT_SUBMISSIONS_DIR):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"SubmissionArchive initialized: {self.base_dir}")

    def __call__(self, inspection_id: str, payload: Dict[str, Any]) -> str:
        """
        Store a submission.

        Args:
            inspection_id: Inspection identifier
            payload: Submission payload (JSON serialisable)

        Returns:
            str: Absolute path to saved file

        Raises:
            FileExistsError: If the inspection was already submitted
        """
        filepath = self.base_dir / f"INSP-{inspection_id}.json"

        if filepath.exists():
            raise FileExistsError(
                f"Submission already exists: {filepath}. "
                f"This indicates a double-submit."
            )

        with open(filepath, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False)

        logger.info(f"Saved submission {inspection_id}: {filepath.name}")
        return str(filepath.absolute())

    def load(self, inspection_id: str) -> Optional[Dict[str, Any]]:
        filepath = self.base_dir / f"INSP-{inspection_id}.json"
        if not filepath.exists():
            logger.warning(f"Submission not found: {inspection_id}")
            return None
        with open(filepath, 'r', encoding='utf-8') as f:
            return json.load(f)
