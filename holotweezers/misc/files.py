"""
Helpers for naming and writing data files.

Session statistics, hardware state, and lookup tables are stored in the
`HDF5 <https://hdfgroup.org/solutions/hdf5>`_ (.h5) format through :mod:`h5py`.
Files are named like ``path/name_00012.h5`` so that repeated saves never overwrite
earlier results; :meth:`latest_path` finds the most recent one.
"""

import os
import re

import h5py
import numpy as np


def _numeric_ids(path, name, extension=None, kind="file", digit_count=5):
    """
    Lists the numeric identifiers ``id`` of every object in ``path``
    named like ``name_id.extension``.
    """
    pattern = r"^{}_(\d{{{}}})".format(re.escape(name), digit_count)
    if extension is not None and kind == "file":
        pattern += r"\.{}$".format(re.escape(extension))

    ids = []
    if not os.path.isdir(path):
        return ids

    for entry in os.listdir(path):
        if kind == "dir" and not os.path.isdir(os.path.join(path, entry)):
            continue
        match = re.search(pattern, entry)
        if match is not None:
            ids.append(int(match.group(1)))

    return ids


def _format_name(name, numeric_id, extension, kind, digit_count):
    formatted = "{}_{:0{}d}".format(name, numeric_id, digit_count)
    if extension is not None and kind == "file":
        formatted = "{}.{}".format(formatted, extension)
    return formatted


def generate_path(path, name, extension=None, kind="file", digit_count=5):
    """
    Generate a path like ``path/name_id.extension`` (or the directory
    ``path/name_id``) where ``id`` is one larger than any existing identifier.

    Parameters
    ----------
    path : str
        Parent directory. Created (with parents) if it does not exist.
    name : str
        Stem of the object name. Should not contain underscores.
    extension : str OR None
        File extension without the ``.`` separator.
    kind : {"file", "dir"}
        Whether a file or directory is requested. Directories are created.
    digit_count : int
        Number of digits in the identifier.

    Returns
    -------
    str
        The generated path.

    Notes
    -----
    This function is not thread safe.
    """
    path = os.path.abspath(path)
    os.makedirs(path, exist_ok=True)

    ids = _numeric_ids(path, name, extension=extension, kind=kind, digit_count=digit_count)
    numeric_id = max(ids) + 1 if len(ids) else 0

    full_path = os.path.join(path, _format_name(name, numeric_id, extension, kind, digit_count))

    if kind == "dir":
        os.makedirs(full_path)

    return full_path


def latest_path(path, name, extension=None, kind="file", digit_count=5):
    """
    Finds the object in ``path`` named like ``name_id`` with the largest ``id``.

    Parameters
    ----------
    path, name, extension, kind, digit_count
        See :meth:`generate_path`.

    Returns
    -------
    str OR None
        The path, or ``None`` if nothing matches.
    """
    ids = _numeric_ids(path, name, extension=extension, kind=kind, digit_count=digit_count)
    if len(ids) == 0:
        return None

    return os.path.join(path, _format_name(name, max(ids), extension, kind, digit_count))


def _to_host(value):
    """Copies :mod:`cupy` arrays to the host; leaves everything else alone."""
    if hasattr(value, "get"):
        return value.get()
    return value


def save_h5(file_path, data, mode="w"):
    """
    Write a (possibly nested) dictionary to an h5 file.

    Nested dictionaries become groups. ``None`` values are skipped since h5
    datasets cannot hold them. Strings (and uniform arrays of strings) are stored
    as utf-8 bytes. :mod:`cupy` arrays are copied to the host first.

    Parameters
    ----------
    file_path : str
        Full path of the file.
    data : dict
        Data to store.
    mode : str
        Mode passed to :class:`h5py.File`.
    """
    def recurse(group, data):
        for key, value in data.items():
            if isinstance(value, dict):
                recurse(group.create_group(str(key)), value)
            elif isinstance(value, str):
                group[str(key)] = value.encode("utf-8")
            elif value is not None:
                array = np.asarray(_to_host(value))
                if array.dtype.char == "U":
                    array = np.char.encode(array, "utf-8")
                group[str(key)] = array

    with h5py.File(file_path, mode) as file_:
        recurse(file_, data)


def load_h5(file_path, decode_bytes=True):
    """
    Read an h5 file into a (possibly nested) dictionary.

    Parameters
    ----------
    file_path : str
        Full path of the file.
    decode_bytes : bool
        Whether to decode ``bytes`` (how h5 stores strings) back into ``str``.

    Returns
    -------
    dict
        The stored data.
    """
    def recurse(group):
        data = {}

        for key in group.keys():
            if isinstance(group[key], h5py.Group):
                data[key] = recurse(group[key])
                continue

            value = group[key][()]
            if decode_bytes:
                if isinstance(value, bytes):
                    value = value.decode()
                elif isinstance(value, np.ndarray) and value.size and isinstance(value.flat[0], bytes):
                    value = np.vectorize(bytes.decode)(value)
            data[key] = value

        return data

    with h5py.File(file_path, "r") as file_:
        return recurse(file_)
