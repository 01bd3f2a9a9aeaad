"""LLM interaction logger for debugging and auditing discussion turns."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional


class LLMLogger:
    """Logger for completion calls with detailed request/response tracking."""

    def __init__(self, log_dir: str = "logs", logger_name: str = "llm_interactions"):
        """Initialize LLM logger.

        Args:
            log_dir: Directory to store log files
            logger_name: Logging channel the JSON records are written to
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self.logger = logging.getLogger(logger_name)
        self.logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers when several discussions share a channel
        if not self.logger.handlers:
            log_file = self.log_dir / f"llm_interactions_{datetime.now().strftime('%Y%m%d')}.log"
            fh = logging.FileHandler(log_file, encoding='utf-8')
            fh.setLevel(logging.DEBUG)
            fh.setFormatter(logging.Formatter('%(message)s'))
            self.logger.addHandler(fh)

    def log_interaction(
        self,
        trace_id: str,
        prompt_parts: List[Dict[str, str]],
        response_text: str,
        model: Optional[str] = None,
        extra_params: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log one completed generation call.

        Args:
            trace_id: ``<discussion_id>:<sequence>`` identifier of the turn
            prompt_parts: Role/content parts sent to the completion service
            response_text: Decoded reply text
            model: Model name, when known
            extra_params: Additional context (agent id, attempt number, ...)
        """
        timestamp = datetime.now().isoformat()
        log_entry: Dict[str, Any] = {
            "timestamp": timestamp,
            "trace_id": trace_id,
            "request": {
                "part_count": len(prompt_parts),
                "parts": prompt_parts,
            },
            "response": {
                "content": response_text,
                "chars": len(response_text),
            },
        }
        if model:
            log_entry["model"] = model
        if extra_params:
            log_entry["extra_params"] = extra_params

        separator = "=" * 80
        self.logger.debug(f"\n{separator}")
        self.logger.debug(f"LLM INTERACTION @ {timestamp}")
        self.logger.debug(separator)
        self.logger.debug(json.dumps(log_entry, ensure_ascii=False, indent=2, default=str))
        self.logger.debug(f"{separator}\n")

    def log_error(self, trace_id: str, error: Exception, context: str = "") -> None:
        """Log a failed generation attempt.

        Args:
            trace_id: Turn identifier
            error: Exception that occurred
            context: Additional context about the error
        """
        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "type": "ERROR",
            "trace_id": trace_id,
            "error": {
                "type": error.__class__.__name__,
                "message": str(error),
                "context": context,
            },
        }
        self.logger.error(json.dumps(log_entry, ensure_ascii=False, indent=2))
