"""Interface to the phase modulator hardware."""
import warnings
import datetime

from holotweezers import __version__
from holotweezers.misc.files import generate_path, save_h5


class _Picklable:
    """
    Mixin for hardware objects which can dump their state to an h5 file.
    """
    _pickle = []        # Light attributes, usually scalars.
    _pickle_data = []   # Heavy attributes such as frames and tables.

    def pickle(self, attributes=True, metadata=True):
        """
        Returns a dictionary containing selected attributes of this object.

        Parameters
        ----------
        attributes : bool OR list of str
            ``False`` collects only :attr:`_pickle`; ``True`` also collects
            :attr:`_pickle_data`. A list selects the attributes directly.
        metadata : bool
            If ``True``, nests the dictionary under ``"__meta__"`` next to
            ``"__version__"``, ``"__time__"``, and ``"__timestamp__"``.

        Returns
        -------
        dict
            The collected attributes.
        """
        if isinstance(attributes, bool):
            attributes = self._pickle + (self._pickle_data if attributes else [])

        pickled = {"__class__": str(self)}

        for k in attributes:
            if not hasattr(self, k):
                warnings.warn(f"Expected attribute '{k}' not present in {self}.")
            else:
                pickled[k] = getattr(self, k)

        if not metadata:
            return pickled

        t = datetime.datetime.now()
        return {
            "__version__": __version__,
            "__time__": str(t),
            "__timestamp__": t.timestamp(),
            "__meta__": pickled,
        }

    def save(self, path=".", name=None, **kwargs):
        """
        Saves :meth:`pickle()` to a file like ``"path/name_id.h5"``.

        Parameters
        ----------
        path : str
            Directory to save in.
        name : str OR None
            File stem. Defaults to :attr:`name` + ``"-pickle"``.
        **kwargs
            Passed to :meth:`pickle()`.

        Returns
        -------
        str
            The file path written.
        """
        if name is None:
            name = self.name + "-pickle"
        file_path = generate_path(path, name, extension="h5")

        save_h5(file_path, self.pickle(**kwargs))

        return file_path
