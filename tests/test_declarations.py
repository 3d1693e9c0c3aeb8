"""Tests for Dart top-level declaration extraction.

Covers:
- Functions, classes and arrow functions in generated project files
- Body text and offsets
- Directives, variables and nested blocks are skipped
- Braces inside strings and comments do not confuse segmentation
- Unbalanced input raises DeclarationParseError
"""

from __future__ import annotations

import pytest

from custom_code_sync.errors import DeclarationParseError
from custom_code_sync.sync.declarations import (
    DartDeclarationExtractor,
    Declaration,
)


@pytest.fixture
def extractor() -> DartDeclarationExtractor:
    return DartDeclarationExtractor()


class TestMockProjectFiles:
    """Extraction from the files of a generated project."""

    def test_action_file(self, extractor, mock_project):
        source = (
            mock_project / "lib/custom_code/actions/my_action.dart"
        ).read_text()
        assert extractor.top_level_names(source) == ["myAction"]

    def test_widget_file(self, extractor, mock_project):
        source = (
            mock_project / "lib/custom_code/widgets/my_widget.dart"
        ).read_text()
        assert extractor.top_level_names(source) == ["MyWidget", "_MyWidgetState"]

    def test_functions_file(self, extractor, mock_project):
        source = (
            mock_project / "lib/flutter_flow/custom_functions.dart"
        ).read_text()
        assert extractor.top_level_names(source) == [
            "func335",
            "func336",
            "func337",
            "createTestRun",
        ]

    def test_function_body(self, extractor, mock_project):
        source = (
            mock_project / "lib/flutter_flow/custom_functions.dart"
        ).read_text()
        declarations = extractor.extract_declarations(source)
        assert declarations[0].body == 'return "func335";'

    def test_index_file_has_no_declarations(self, extractor, mock_project):
        source = (mock_project / "lib/custom_code/actions/index.dart").read_text()
        assert extractor.extract_declarations(source) == []


class TestDeclarationShapes:
    """Tests for individual declaration forms."""

    def test_offsets_cover_declaration(self, extractor):
        source = "import 'a.dart';\n\nint add(int a, int b) {\n  return a + b;\n}\n"
        (decl,) = extractor.extract_declarations(source)

        assert decl.name == "add"
        assert source[decl.start : decl.end] == (
            "int add(int a, int b) {\n  return a + b;\n}"
        )

    def test_arrow_function(self, extractor):
        (decl,) = extractor.extract_declarations("int twice(int x) => x * 2;\n")
        assert decl == Declaration("twice", "x * 2", 0, 26)

    def test_generic_return_type(self, extractor):
        source = "Future<Map<String, int>> load() async {\n  return {};\n}\n"
        assert extractor.top_level_names(source) == ["load"]

    def test_named_parameters(self, extractor):
        source = "void configure({String? name, int count = 1}) {\n}\n"
        assert extractor.top_level_names(source) == ["configure"]

    @pytest.mark.parametrize(
        "source, name",
        [
            ("abstract class Shape {\n}\n", "Shape"),
            ("mixin Walker {\n}\n", "Walker"),
            ("enum Color { red, green }\n", "Color"),
            ("extension StringX on String {\n}\n", "StringX"),
            ("sealed class Result {}\n", "Result"),
        ],
    )
    def test_class_like_declarations(self, extractor, source, name):
        assert extractor.top_level_names(source) == [name]

    @pytest.mark.parametrize(
        "source, name",
        [
            (
                "@pragma('vm:entry-point')\nFuture<void> myAction() async {\n}\n",
                "myAction",
            ),
            ("@Deprecated('use other')\nint f() => 1;\n", "f"),
            ("@immutable\nclass Point {\n}\n", "Point"),
            (
                "@JsonSerializable(explicitToJson: true, converters: [A()])\n"
                "class Model {\n}\n",
                "Model",
            ),
        ],
    )
    def test_annotated_declarations(self, extractor, source, name):
        assert extractor.top_level_names(source) == [name]

    def test_annotated_body_kept(self, extractor):
        source = "@pragma('vm:entry-point')\nint one() {\n  return 1;\n}\n"
        (decl,) = extractor.extract_declarations(source)
        assert decl.name == "one"
        assert decl.body == "return 1;"

    def test_variables_are_skipped(self, extractor):
        source = (
            "final cache = <String, int>{};\n"
            "const limit = 10;\n"
            "var handler = () {\n  return 1;\n};\n"
            "int real() => limit;\n"
        )
        assert extractor.top_level_names(source) == ["real"]

    def test_private_declaration(self, extractor):
        (decl,) = extractor.extract_declarations("void _hidden() {}\n")
        assert not decl.is_public

    def test_nested_functions_not_reported(self, extractor):
        source = "void outer() {\n  void inner() {}\n  inner();\n}\n"
        assert extractor.top_level_names(source) == ["outer"]

    def test_deterministic(self, extractor, mock_project):
        source = (
            mock_project / "lib/flutter_flow/custom_functions.dart"
        ).read_text()
        assert extractor.extract_declarations(
            source
        ) == extractor.extract_declarations(source)


class TestTrivia:
    """Strings and comments are skipped during segmentation."""

    def test_braces_in_strings(self, extractor):
        source = (
            "String a() {\n  return '}' + \"{\";\n}\n"
            "String b() => '''\n{ multi\n''';\n"
        )
        assert extractor.top_level_names(source) == ["a", "b"]

    def test_braces_in_comments(self, extractor):
        source = (
            "// void fake() {\n"
            "/* class Hidden { */\n"
            "void real() {\n  // }\n}\n"
        )
        assert extractor.top_level_names(source) == ["real"]

    def test_escaped_quote(self, extractor):
        source = "String q() {\n  return 'it\\'s }';\n}\n"
        assert extractor.top_level_names(source) == ["q"]

    def test_raw_string(self, extractor):
        source = "String p() {\n  return r'C:\\path\\';\n}\n"
        assert extractor.top_level_names(source) == ["p"]


class TestParseErrors:
    """Unbalanced input raises DeclarationParseError."""

    @pytest.mark.parametrize(
        "source",
        [
            "void f() {\n",
            "void f() {}\n}\n",
            "void f() {\n  return 'oops;\n}\n",
            "/* never closed\nvoid f() {}\n",
            "void f(int a {\n",
        ],
    )
    def test_unbalanced(self, extractor, source):
        with pytest.raises(DeclarationParseError):
            extractor.extract_declarations(source)
