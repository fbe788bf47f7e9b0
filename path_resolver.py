# path_resolver.py

# Lexical path resolution. Nothing here touches the tree, so a resolved
# path may not exist; callers find that out through get_node.


def home_dir(fs, username=None):
    username = username or fs.current_user
    user = fs.users.get(username)
    if user is not None and user.home_dir:
        return user.home_dir
    return f"/home/{username}"


def resolve_path(fs, path, current_path):
    # Absolute paths are returned untouched
    if path.startswith("/"):
        return path

    if path == "~":
        return home_dir(fs)

    if path.startswith("~/"):
        return home_dir(fs) + path[1:]

    segments = [s for s in current_path.split("/") if s]
    for segment in (s for s in path.split("/") if s):
        if segment == "..":
            # Never climb above the root
            if segments:
                segments.pop()
        elif segment != ".":
            segments.append(segment)

    return "/" + "/".join(segments)
