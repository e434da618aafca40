import pytest
from layerscope.PARSERS.settings_parser import SettingsParser
from layerscope.UTILS.string_interpolation import EnvironmentInterpolator
from layerscope.errors import SchemaError


def test_parse_from_string():
    content = """
    docker_root: /mnt/evidence/var/lib/docker
    containerd_root: /mnt/evidence/var/lib/containerd
    layer_store: overlay2
    mount_binary: /usr/bin/mount
    """
    settings = SettingsParser(context={}).parse_from_string(content)
    assert settings.docker_root == '/mnt/evidence/var/lib/docker'
    assert settings.containerd_root == '/mnt/evidence/var/lib/containerd'
    assert settings.mount_binary == '/usr/bin/mount'
    assert settings.umount_binary == 'umount'
    assert settings.resolved_metadata_file == \
        '/mnt/evidence/var/lib/containerd/io.containerd.metadata.v1.bolt/meta.db'


def test_explicit_metadata_file():
    settings = SettingsParser(context={}).parse_from_string("metadata_file: /evidence/meta.db\n")
    assert settings.resolved_metadata_file == '/evidence/meta.db'


def test_empty_document_uses_defaults():
    settings = SettingsParser(context={}).parse_from_string("")
    assert settings.docker_root == '/var/lib/docker'
    assert settings.layer_store == 'overlay2'
    assert settings.metadata_file is None


def test_variable_expansion():
    content = "docker_root: ${EVIDENCE}/var/lib/docker\ncontainerd_root: ${CTRD:-/var/lib/containerd}\n"
    settings = SettingsParser(context={'EVIDENCE': '/mnt/case42'}).parse_from_string(content)
    assert settings.docker_root == '/mnt/case42/var/lib/docker'
    assert settings.containerd_root == '/var/lib/containerd'


def test_unresolved_variable():
    with pytest.raises(SchemaError):
        SettingsParser(context={}).parse_from_string("docker_root: ${EVIDENCE}/docker\n")


def test_invalid_yaml():
    with pytest.raises(SchemaError):
        SettingsParser(context={}).parse_from_string("docker_root: [unclosed\n")


def test_not_a_mapping():
    with pytest.raises(SchemaError):
        SettingsParser(context={}).parse_from_string("- /var/lib/docker\n")


def test_wrong_type():
    with pytest.raises(SchemaError):
        SettingsParser(context={}).parse_from_string("layer_store: [overlay2]\n")


def test_parse_file_sets_path(tmp_path):
    path = tmp_path / "layerscope.yml"
    path.write_text("docker_root: ${MISSING}\n")
    with pytest.raises(SchemaError) as excinfo:
        SettingsParser(context={}).parse(str(path))
    assert excinfo.value.path == str(path)


def test_merge_skips_none():
    parser = SettingsParser(context={})
    settings = parser.parse_from_string("docker_root: /from/file\nlayer_store: overlay\n")
    merged = parser.merge(settings, {'docker_root': None, 'layer_store': 'overlay2'})
    assert merged.docker_root == '/from/file'
    assert merged.layer_store == 'overlay2'
    assert settings.layer_store == 'overlay'


def test_interpolate_default_for_empty_value():
    assert EnvironmentInterpolator.interpolate("${A:-x}", {'A': ''}) == 'x'
    assert EnvironmentInterpolator.interpolate("${A:-x}", {'A': 'y'}) == 'y'
    assert EnvironmentInterpolator.interpolate("plain", {}) == 'plain'
