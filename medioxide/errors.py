class FileManagerError(Exception):
    pass


class DirectoryDoesNotExist(FileManagerError):
    def __init__(self, folder):
        super().__init__(f'Directory to manage "{folder}" does not exist')
        self.folder = folder


class CouldNotCreateDirectory(FileManagerError):
    pass


class CouldNotReadFromDirectory(FileManagerError):
    pass


class CouldNotLoadIndexIntoMemory(FileManagerError):
    pass


class CouldNotCreateNewFile(FileManagerError):
    pass


class CorruptedIndexEntry(FileManagerError):
    def __init__(self, line_number, line):
        super().__init__(f"Entry in index was corrupted at line {line_number}: {line!r}")
        self.line_number = line_number
        self.line = line


class InvalidIndexEntry(FileManagerError):
    pass


class CouldNotLockIndex(FileManagerError):
    def __init__(self, mode):
        super().__init__(f"Could not acquire index lock for {mode}")
        self.mode = mode


class FileAlreadyExists(FileManagerError):
    def __init__(self, file_name):
        super().__init__(f"File {file_name} already exists")
        self.file_name = file_name


class IdAlreadyExists(FileManagerError):
    def __init__(self, file_id):
        super().__init__(f"Id {file_id} is already in the index")
        self.file_id = file_id


class IndexedFileDoesNotExist(FileManagerError):
    def __init__(self, path):
        super().__init__(f"File {path} does not exist in directory, but was found in index")
        self.path = path
