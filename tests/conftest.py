"""Shared pytest fixtures for custom-code-sync tests."""

from __future__ import annotations

import re
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from custom_code_sync.config import Config
from custom_code_sync.errors import DeclarationParseError
from custom_code_sync.sync.declarations import Declaration
from custom_code_sync.sync.state import SnapshotStore
from custom_code_sync.sync.tracker import ChangeTracker

load_dotenv()


ACTION_SOURCE = """\
// Automatic FlutterFlow imports
import '/backend/schema/structs/index.dart';
import '/flutter_flow/flutter_flow_theme.dart';
import '/flutter_flow/flutter_flow_util.dart';
import 'index.dart'; // Imports other custom actions
import '/flutter_flow/custom_functions.dart'; // Imports custom functions
import 'package:flutter/material.dart';
// Begin custom action code
// DO NOT REMOVE OR MODIFY THE CODE ABOVE!

import 'package:file_picker/file_picker.dart';

Future<List<String>> myAction() async {
  // Add your function code here!
  return [""];
}
"""

WIDGET_SOURCE = """\
// Automatic FlutterFlow imports
import '/backend/schema/structs/index.dart';
import '/flutter_flow/flutter_flow_theme.dart';
import '/flutter_flow/flutter_flow_util.dart';
import 'index.dart'; // Imports other custom widgets
import '/custom_code/actions/index.dart'; // Imports custom actions
import '/flutter_flow/custom_functions.dart'; // Imports custom functions
import 'package:flutter/material.dart';
// Begin custom widget code
// DO NOT REMOVE OR MODIFY THE CODE ABOVE!

class MyWidget extends StatefulWidget {
  const MyWidget({
    super.key,
    this.width,
    this.height,
  });

  final double? width;
  final double? height;

  @override
  State<MyWidget> createState() => _MyWidgetState();
}

class _MyWidgetState extends State<MyWidget> {
  @override
  Widget build(BuildContext context) {
    return Container();
  }
}
"""

FUNCTIONS_SOURCE = """\
import 'dart:convert';
import 'dart:math' as math;

import 'package:flutter/material.dart';
import 'package:intl/intl.dart';
import 'lat_lng.dart';
import '/backend/schema/structs/index.dart';

String func335() {
  return "func335";
}

String func336(String param1) {
  return "func336 $param1";
}

String func337(String param1) {
  return "func337 $param1";
}

Future<DocumentReference?> createTestRun(
  String label,
  String hashBefore,
  String hashAfter, {
  List<String>? projectIds,
}) async {
  if (runnerId != 0 && runnerId != 1) {
    ffLog('Invalid runner id: $runnerId');
    return null;
  }
  return "$label";
}
"""

PUBSPEC_SOURCE = """\
name: flutter_flow_custom_code_editor
description: A FlutterFlow custom code editor
publish_to: none
version: 1.0.0
"""

MOCK_FILES = {
    "lib/custom_code/actions/my_action.dart": ACTION_SOURCE,
    "lib/custom_code/widgets/my_widget.dart": WIDGET_SOURCE,
    "lib/flutter_flow/custom_functions.dart": FUNCTIONS_SOURCE,
    "lib/custom_code/actions/index.dart": "export 'my_action.dart' show myAction;\n",
    "lib/custom_code/widgets/index.dart": "export 'my_widget.dart' show MyWidget;\n",
    "pubspec.yaml": PUBSPEC_SOURCE,
}


def write_project(root: Path, files: dict[str, str]) -> Path:
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


class FakeExtractor:
    """Deterministic extractor for ``name: body`` lines.

    Blank lines and lines starting with ``#`` are ignored.  A line reading
    ``!!`` raises ``DeclarationParseError``.
    """

    _LINE = re.compile(r"^(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<body>.*)$")

    def __init__(self):
        self.calls = 0

    def extract_declarations(self, source: str) -> list[Declaration]:
        self.calls += 1
        declarations = []
        offset = 0
        for line in source.splitlines(keepends=True):
            stripped = line.strip()
            if stripped == "!!":
                raise DeclarationParseError("fake parse failure")
            match = self._LINE.match(stripped)
            if match:
                declarations.append(
                    Declaration(
                        name=match.group("name"),
                        body=match.group("body").strip(),
                        start=offset,
                        end=offset + len(line),
                    )
                )
            offset += len(line)
        return declarations


@pytest.fixture
def mock_project(tmp_path: Path) -> Path:
    """A generated project with one action, one widget and the functions file."""
    root = tmp_path / "project"
    root.mkdir()
    return write_project(root, MOCK_FILES)


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def sleeps() -> list[float]:
    """Records the delays requested by a store's retry loop."""
    return []


@pytest.fixture
def store(mock_project: Path, sleeps: list[float]) -> SnapshotStore:
    return SnapshotStore(mock_project, sleep=sleeps.append)


@pytest.fixture
def tracker(mock_project: Path, store: SnapshotStore) -> ChangeTracker:
    """Tracker whose baseline is the mock project as written."""
    return ChangeTracker.from_filesystem(mock_project, store=store)


@pytest.fixture
def mock_config() -> Config:
    """Create a Config instance for testing."""
    return Config(
        api_token="test-token",
        api_url="https://api.example.com/v1",
        snapshot_retry_base_delay=0.0,
    )


@pytest.fixture
def mock_remote_client(mock_config):
    """Create a mock RemoteClient bound to a test project."""
    from custom_code_sync.core.client import RemoteClient

    client = MagicMock(spec=RemoteClient)
    client.config = mock_config
    client.project_id = "proj-123"
    client.branch_name = ""
    return client
