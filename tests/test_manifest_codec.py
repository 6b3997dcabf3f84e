import asyncio
from pathlib import Path

import pytest

from appsync.exceptions import InvalidManifestError
from appsync.models.manifest import (
    ApplicationManifest,
    DirectoryEntry,
    FileEntry,
    SourceDirectoryEntry,
)
from appsync.storage.manifest_codec import (
    SerializationMode,
    create_template_manifest,
    detect_encoding,
    load_manifest,
    parse_manifest,
    parse_manifest_file,
    to_xml,
    write_manifest,
)

SAMPLE = b"""<?xml version="1.0" encoding="UTF-8"?>
<application>
  <title>Demo</title>
  <vendor>Example Inc.</vendor>
  <destPath>${userHome}/demo</destPath>
  <idFilename>.demo</idFilename>
  <silentInstall>true</silentInstall>
  <locale>de,DE</locale>
  <startFrameDelaySeconds>5</startFrameDelaySeconds>
  <javaArgs>-classpath ${classpath} demo.Main</javaArgs>
  <unknownTag>ignored</unknownTag>
  <mkdir path="logs"/>
  <dir path="plugins" srcPathUrl="https://example.org/plugins/${filename}"/>
  <file path="lib" file="app.jar" hash="0123456789abcdef0123456789abcdef" size="1000"
        srcFileUrl="https://example.org/lib/app.jar" addToClasspath="true"/>
  <file path="" file="data.zip" hash="fedcba9876543210fedcba9876543210" size="20"
        srcFileUrl="https://example.org/data.zip" unzip="true" order="1"/>
</application>
"""


def test_parse_sample():
    manifest = parse_manifest(SAMPLE)
    assert manifest.title == "Demo"
    assert manifest.vendor == "Example Inc."
    assert manifest.dest_path == "${userHome}/demo"
    assert manifest.silent_install is True
    assert manifest.silent_update is False
    assert manifest.exit_after_execute is True
    assert manifest.locale == "de,DE"
    assert manifest.start_frame_delay_seconds == 5
    assert manifest.launch_arguments == "-classpath ${classpath} demo.Main"
    assert manifest.directories == [DirectoryEntry("logs")]
    assert manifest.source_directories[0].path == "plugins"

    jar, archive = manifest.files
    assert jar.on_classpath and not jar.archive_expand
    assert jar.size == 1000
    assert jar.rollout_order == 0
    assert archive.archive_expand
    assert archive.rollout_order == 1


def test_parse_applies_options():
    manifest = parse_manifest(SAMPLE, options={"userHome": "/home/me"})
    assert manifest.resolved("dest_path") == "/home/me/demo"


@pytest.mark.parametrize(
    "element",
    [
        '<file file="a" hash="h" size="1" srcFileUrl="u"/>',
        '<file path="" hash="h" size="1" srcFileUrl="u"/>',
        '<file path="" file="a" size="1" srcFileUrl="u"/>',
        '<file path="" file="a" hash="h" srcFileUrl="u"/>',
        '<file path="" file="a" hash="h" size="1"/>',
        '<file path="" file="a" hash="h" size="many" srcFileUrl="u"/>',
        '<dir path="plugins"/>',
        '<dir path="plugins" srcPathUrl="https://example.org/plugins/"/>',
        "<mkdir/>",
        "<startFrameDelaySeconds>soon</startFrameDelaySeconds>",
    ],
)
def test_invalid_elements(element):
    data = f"<application>{element}</application>".encode()
    with pytest.raises(InvalidManifestError):
        parse_manifest(data, "test.xml")


def test_malformed_document():
    with pytest.raises(InvalidManifestError) as excinfo:
        parse_manifest(b"<application><title>x</application>", "broken.xml")
    assert "broken.xml" in str(excinfo.value)


def test_duplicate_file_declarations_are_rejected():
    data = b"""<application>
  <file path="lib" file="app.jar" hash="aa" size="1" srcFileUrl="http://x/1"/>
  <file path="lib/" file="app.jar" hash="bb" size="2" srcFileUrl="http://x/2"/>
</application>"""
    with pytest.raises(InvalidManifestError, match="lib/app.jar"):
        parse_manifest(data, "dup.xml")


def test_empty_tags_keep_defaults():
    manifest = parse_manifest(
        b"<application><exitAfterExecute/><showStartFrame> </showStartFrame>"
        b"<title/></application>"
    )
    assert manifest.exit_after_execute is True
    assert manifest.show_start_frame is True
    assert manifest.title is None


def test_detect_encoding():
    assert detect_encoding(b'<?xml version="1.0" encoding="ISO-8859-1"?>') == "ISO-8859-1"
    assert detect_encoding(b"<application/>") == "UTF-8"
    assert detect_encoding("<application/>".encode("utf-16")) == "UTF-16"
    assert detect_encoding("<application/>".encode("utf-32")) == "UTF-32"


def test_non_utf8_document():
    data = (
        '<?xml version="1.0" encoding="ISO-8859-1"?>\n'
        "<application><title>Bücher</title></application>\n"
    ).encode("iso-8859-1")
    manifest = parse_manifest(data)
    assert manifest.title == "Bücher"
    assert manifest.encoding == "ISO-8859-1"
    assert b"B\xfccher" in to_xml(manifest).encode("iso-8859-1")


@pytest.mark.parametrize("encoding", ["UTF-16", "UTF-32"])
def test_wide_encoding_round_trip(tmp_path: Path, encoding):
    manifest = ApplicationManifest(title="Bücher", dest_path="/opt/demo", encoding=encoding)
    manifest.files.append(FileEntry("lib", "app.jar", "ab" * 16, 3, "http://x/app.jar"))
    target = tmp_path / "application.xml"
    write_manifest(manifest, target)

    again = parse_manifest_file(target)
    assert again.encoding == encoding
    assert again.simple_attributes_equal(manifest)
    assert again.files == manifest.files
    assert parse_manifest(to_xml(again).encode(encoding)).title == "Bücher"


def test_template_round_trip():
    manifest = parse_manifest(SAMPLE)
    again = parse_manifest(to_xml(manifest).encode("utf-8"))
    assert again.simple_attributes_equal(manifest)
    assert again.files == manifest.files
    assert [f.content_hash for f in again.files] == [f.content_hash for f in manifest.files]
    assert [f.rollout_order for f in again.files] == [0, 1]
    assert again.directories == manifest.directories
    assert again.source_directories == manifest.source_directories


def test_resolved_mode_substitutes_placeholders():
    manifest = parse_manifest(SAMPLE, options={"userHome": "/home/me"})
    manifest.set_option("classpath", '"lib/app.jar"')
    template = to_xml(manifest, SerializationMode.TEMPLATE)
    resolved = to_xml(manifest, SerializationMode.RESOLVED)
    assert "<destPath>${userHome}/demo</destPath>" in template
    assert "<destPath>/home/me/demo</destPath>" in resolved
    assert '-classpath "lib/app.jar" demo.Main' in resolved


def test_special_characters_are_escaped():
    manifest = ApplicationManifest(title="A & B <C>")
    manifest.files.append(
        FileEntry("", "a&b's.txt", "h", 1, "http://x/?a=1&b=2", rollout_order=0)
    )
    again = parse_manifest(to_xml(manifest).encode("utf-8"))
    assert again.title == "A & B <C>"
    assert again.files[0].filename == "a&b's.txt"
    assert again.files[0].source_location == "http://x/?a=1&b=2"


def test_unset_values_are_written_as_empty_tags():
    xml = to_xml(ApplicationManifest())
    assert "<title/>" in xml
    assert "<silentInstall>false</silentInstall>" in xml
    assert "xmlEncoding" not in xml


def test_write_manifest_with_backup(tmp_path: Path):
    target = tmp_path / "app.xml"
    first = ApplicationManifest(title="First")
    second = ApplicationManifest(title="Second")
    write_manifest(first, target, backup=True)
    assert not (tmp_path / "app.xml.bak").exists()
    write_manifest(second, target, backup=True)
    assert parse_manifest_file(target).title == "Second"
    assert parse_manifest_file(tmp_path / "app.xml.bak").title == "First"


def test_parse_manifest_file_missing(tmp_path: Path):
    with pytest.raises(InvalidManifestError):
        parse_manifest_file(tmp_path / "missing.xml")


def test_load_manifest_from_file_url(tmp_path: Path):
    target = tmp_path / "app.xml"
    target.write_bytes(SAMPLE)
    manifest = asyncio.run(load_manifest(target.as_uri(), options={"userHome": "/u"}))
    assert manifest.resolved("dest_path") == "/u/demo"
    with pytest.raises(InvalidManifestError):
        asyncio.run(load_manifest(str(tmp_path / "missing.xml")))


def test_template_manifest_placeholders():
    manifest = create_template_manifest()
    assert manifest.title == "Your title"
    assert manifest.dest_path == "${userHome}/yourapp"
    assert manifest.id_filename == ".yourapp"
    assert "${classpath}" in manifest.launch_arguments
    manifest.check()


def test_source_directory_round_trip():
    manifest = ApplicationManifest()
    manifest.source_directories.append(
        SourceDirectoryEntry("plugins", "https://example.org/p/${filename}?x=1&y=2")
    )
    again = parse_manifest(to_xml(manifest).encode("utf-8"))
    assert (
        again.source_directories[0].source_location_template
        == "https://example.org/p/${filename}?x=1&y=2"
    )
