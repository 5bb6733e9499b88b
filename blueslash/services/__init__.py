"""Service layer: lifecycle operations over the document store.

Every operation is a module-level async function taking an ``AppContext``
first and keyword-only arguments after it.
"""
