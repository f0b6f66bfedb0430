"""ScriptLoader - loads walkthrough script bundles from JSON or YAML."""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

BUNDLE_CANDIDATES = ('scripts.json', 'bundle.json', 'scripts.yaml')

# Shown when no bundle is found so the surface always has something to run
SAMPLE_SCRIPT: Dict[str, Any] = {
    'id': 'sample',
    'name': 'Sample Walkthrough',
    'description': 'Demo flow to check the walkthrough surface',
    'steps': [
        {'id': 'start', 'type': 'prompt', 'message': 'What is your name?', 'variable': 'name'},
        {
            'id': 'path',
            'type': 'choice',
            'message': 'Pick a path',
            'options': [
                {'id': 'inspect', 'label': 'Inspect workspace', 'goto': 'inspect'},
                {'id': 'skip', 'label': 'Skip command', 'goto': 'finish'},
            ],
        },
        {'id': 'inspect', 'type': 'command', 'command': 'ls', 'args': ['-1'], 'onError': 'continue'},
        {'id': 'assert', 'type': 'assert', 'expression': 'len(vars.name) > 0', 'message': 'Name required'},
        {'id': 'finish', 'type': 'end', 'status': 'success', 'message': 'Walkthrough complete'},
    ],
}


class ScriptEntry(BaseModel):
    """
    One script of a bundle.

    Steps stay raw so a malformed script still lists and fails when run.
    """

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Bundle-unique script identifier")
    name: str = Field(..., description="Display name")
    description: Optional[str] = None
    version: Optional[Union[str, float]] = None
    start: Optional[str] = None
    steps: List[Any] = Field(default_factory=list)

    def as_input(self) -> Dict[str, Any]:
        """Script input for validate_script / ScriptEngine.run."""
        return self.model_dump(include={'name', 'version', 'start', 'steps'}, exclude_none=True)


def normalize_scripts(data: Any) -> List[ScriptEntry]:
    """
    Turn a parsed bundle into script entries.

    Accepts a list of scripts, ``{scripts: [...]}`` or ``{default: ...}``.
    Entries without steps are skipped. ``id`` falls back to ``name`` and then
    to ``script-<index>``.

    Args:
        data: Parsed JSON/YAML document

    Returns:
        List of ScriptEntry instances
    """
    if isinstance(data, list):
        entries = []
        for index, item in enumerate(data):
            if not isinstance(item, dict) or not item.get('steps'):
                continue
            script_id = item.get('id') or item.get('name') or f"script-{index}"
            entries.append(ScriptEntry(**{**item, 'id': script_id, 'name': item.get('name') or script_id}))
        return entries

    if isinstance(data, dict):
        if isinstance(data.get('scripts'), list):
            return normalize_scripts(data['scripts'])
        if data.get('default'):
            return normalize_scripts(data['default'])

    return []


class ScriptLoader:
    """
    Loads script bundles from disk.

    Validation of each script's steps happens per run, not at load time.
    """

    def __init__(self, base_path: Optional[Path] = None):
        """
        Initialize loader.

        Args:
            base_path: Directory searched by discover() (default: ./walkthroughs)
        """
        if base_path is None:
            base_path = Path.cwd() / "walkthroughs"
        self.base_path = Path(base_path)

    def read_document(self, path: Union[str, Path]) -> Any:
        """
        Parse a JSON (.json) or YAML (.yaml/.yml) file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file cannot be parsed
        """
        bundle_path = Path(path)
        if not bundle_path.exists():
            raise FileNotFoundError(f"Script bundle not found: {bundle_path}")

        with open(bundle_path, 'r') as f:
            raw = f.read()

        try:
            if bundle_path.suffix in ('.yaml', '.yml'):
                data = yaml.safe_load(raw)
            else:
                data = json.loads(raw)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ValueError(f"Cannot parse script bundle {bundle_path}: {e}") from e

        return data

    def load_bundle(self, path: Union[str, Path]) -> List[ScriptEntry]:
        """
        Load a bundle file.

        Args:
            path: JSON (.json) or YAML (.yaml/.yml) file

        Returns:
            Script entries found in the file

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file cannot be parsed
        """
        return normalize_scripts(self.read_document(path))

    def discover(self) -> List[ScriptEntry]:
        """
        Find the first usable bundle under base_path.

        Returns:
            Scripts from the first candidate that yields any, else the
            built-in sample walkthrough
        """
        for candidate in BUNDLE_CANDIDATES:
            path = self.base_path / candidate
            try:
                scripts = self.load_bundle(path)
            except (FileNotFoundError, ValueError) as e:
                logger.debug("Skipping bundle candidate %s: %s", path, e)
                continue
            if scripts:
                logger.info("Loaded %d scripts from %s", len(scripts), path)
                return scripts

        logger.info("No script bundle under %s; using the sample walkthrough", self.base_path)
        return normalize_scripts([SAMPLE_SCRIPT])
