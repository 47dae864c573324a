import pytest
import os
import kv6util

MODELS_DIR = os.path.join(os.path.dirname(__file__), "models")

# find all models
MODEL_PATHS = []
for root, dirs, files in os.walk(MODELS_DIR):
    for file in files:
        if file.endswith(".kv6"):
            MODEL_PATHS.append(os.path.join(root, file))


@pytest.mark.parametrize("model_path", MODEL_PATHS)
def test_read_write(model_path, tmp_path):
    new_path = os.path.join(tmp_path, os.path.basename(model_path))

    kv6 = kv6util.KV6File.read(model_path)

    kv6.write(new_path)

    # make sure kv6 file generated is identical
    with open(model_path, "rb") as orig_file, open(new_path, "rb") as new_file:
        orig_bytes = orig_file.read()
        new_bytes = new_file.read()

    if orig_bytes != new_bytes:
        if len(orig_bytes) != len(new_bytes):
            raise ValueError(
                f"original file length ({len(orig_bytes)}) != "
                f"new file length ({len(new_bytes)})"
            )

        # find first differing byte
        index = next(i for i in range(len(orig_bytes)) if orig_bytes[i] != new_bytes[i])
        raise ValueError(
            f"Bytes differ at index {hex(index)}: "
            f"{hex(new_bytes[index])} (new) != "
            f"{hex(orig_bytes[index])} (original)"
        )


@pytest.mark.parametrize("model_path", MODEL_PATHS)
@pytest.mark.parametrize("endian", list(kv6util.Endian))
def test_reencode_endian(model_path, endian):
    kv6 = kv6util.KV6File.read(model_path)

    data = kv6.to_bytes(endian)

    assert len(data) == kv6.encoded_size()
    assert kv6util.KV6File.from_bytes(data, endian) == kv6


@pytest.mark.parametrize("model_path", MODEL_PATHS)
def test_read_truncated(model_path):
    with open(model_path, "rb") as f:
        data = f.read()

    for length in range(len(data)):
        with pytest.raises(kv6util.TruncatedInput):
            kv6util.decode_model(data[:length])
