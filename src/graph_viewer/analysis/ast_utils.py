"""Small helpers over libclang cursors shared by the analyses."""

from typing import Iterator, Optional, Tuple

import clang.cindex as clang

K = clang.CursorKind

# Expressions a value passes through unchanged
FLOW_THROUGH = frozenset({K.UNEXPOSED_EXPR, K.PAREN_EXPR, K.CSTYLE_CAST_EXPR})

POINTER_KINDS = frozenset({
    clang.TypeKind.POINTER,
    clang.TypeKind.BLOCKPOINTER,
})
ARRAY_KINDS = frozenset({
    clang.TypeKind.CONSTANTARRAY,
    clang.TypeKind.INCOMPLETEARRAY,
    clang.TypeKind.VARIABLEARRAY,
    clang.TypeKind.DEPENDENTSIZEDARRAY,
})
FUNCTION_KINDS = frozenset({clang.TypeKind.FUNCTIONPROTO, clang.TypeKind.FUNCTIONNOPROTO})


def cursor_text(cursor: clang.Cursor, limit: Optional[int] = None) -> str:
    """Source text of a cursor rebuilt from its tokens."""
    text = ' '.join(t.spelling for t in cursor.get_tokens())
    if limit is not None and len(text) > limit:
        text = text[:limit - 3] + '...'
    return text


def children(cursor: clang.Cursor):
    return list(cursor.get_children())


def strip(cursor: clang.Cursor) -> clang.Cursor:
    """Skip implicit casts, parentheses and explicit casts."""
    while cursor.kind in FLOW_THROUGH:
        kids = children(cursor)
        if len(kids) != 1:
            break
        cursor = kids[0]
    return cursor


def walk_with_parents(cursor: clang.Cursor, parents: Tuple[clang.Cursor, ...] = ()
                      ) -> Iterator[Tuple[clang.Cursor, Tuple[clang.Cursor, ...]]]:
    """Preorder walk yielding each cursor with its ancestors (outermost first)."""
    yield cursor, parents
    inner = parents + (cursor,)
    for child in cursor.get_children():
        yield from walk_with_parents(child, inner)


# Spelling of each libclang binary opcode, keyed by ``BinaryOperator`` name
_BINARY_SPELLINGS = {
    "Mul": "*", "Div": "/", "Rem": "%", "Add": "+", "Sub": "-",
    "Shl": "<<", "Shr": ">>", "Cmp": "<=>",
    "LT": "<", "GT": ">", "LE": "<=", "GE": ">=", "EQ": "==", "NE": "!=",
    "And": "&", "Xor": "^", "Or": "|", "LAnd": "&&", "LOr": "||",
    "Assign": "=", "MulAssign": "*=", "DivAssign": "/=", "RemAssign": "%=",
    "AddAssign": "+=", "SubAssign": "-=", "ShlAssign": "<<=", "ShrAssign": ">>=",
    "AndAssign": "&=", "XorAssign": "^=", "OrAssign": "|=",
    "Comma": ",",
}


def _binary_spelling(cursor: clang.Cursor, kids) -> Optional[str]:
    spelling = _BINARY_SPELLINGS.get(cursor.binary_operator.name)
    if spelling is not None or len(kids) != 2:
        return spelling

    # Operand tokens plus the operator token cover the whole extent,
    # except when the expression comes out of a macro expansion
    tokens = list(cursor.get_tokens())
    lhs = len(list(kids[0].get_tokens()))
    rhs = len(list(kids[1].get_tokens()))
    if lhs == 0 or len(tokens) != lhs + 1 + rhs:
        return None
    operator = tokens[lhs]
    return operator.spelling if operator.kind == clang.TokenKind.PUNCTUATION else None


def operator_spelling(cursor: clang.Cursor) -> Optional[str]:
    """
    Operator of a binary or unary operator cursor.

    Binary opcodes come from libclang. Unary operators are read from the
    token before or after the operand.
    """
    kids = children(cursor)
    if not kids:
        return None

    if cursor.kind in (K.BINARY_OPERATOR, K.COMPOUND_ASSIGNMENT_OPERATOR):
        return _binary_spelling(cursor, kids)

    if cursor.kind == K.UNARY_OPERATOR:
        tokens = list(cursor.get_tokens())
        if not tokens:
            return None
        operand_start = kids[0].extent.start.offset
        if tokens[0].extent.start.offset < operand_start:
            return tokens[0].spelling
        return tokens[-1].spelling

    return None


def is_pointer_like(ctype: clang.Type) -> bool:
    kind = ctype.get_canonical().kind
    return kind in POINTER_KINDS or kind in ARRAY_KINDS


def is_array(ctype: clang.Type) -> bool:
    return ctype.get_canonical().kind in ARRAY_KINDS


def decl_key(decl: clang.Cursor) -> Tuple[str, int]:
    return decl.spelling, decl.location.offset


def is_global_variable(decl: clang.Cursor) -> bool:
    """File-scope variables and function-local statics."""
    if decl.kind != K.VAR_DECL:
        return False
    parent = decl.semantic_parent
    if parent is None or parent.kind == K.TRANSLATION_UNIT:
        return True
    return decl.storage_class == clang.StorageClass.STATIC


def is_local_variable(decl: clang.Cursor) -> bool:
    if decl.kind == K.PARM_DECL:
        return True
    return decl.kind == K.VAR_DECL and not is_global_variable(decl)


def direct_callee(call: clang.Cursor) -> Optional[str]:
    """Name of the function a call names directly, None for indirect calls."""
    ref = call.referenced
    if ref is not None and ref.kind == K.FUNCTION_DECL:
        return ref.spelling
    return None


def callee_function_type(call: clang.Cursor) -> Optional[str]:
    """Canonical spelling of the function type a call goes through."""
    kids = children(call)
    if not kids:
        return None
    ctype = kids[0].type.get_canonical()
    if ctype.kind == clang.TypeKind.POINTER:
        ctype = ctype.get_pointee().get_canonical()
    if ctype.kind not in FUNCTION_KINDS:
        return None
    return ctype.spelling


def call_sites(body: clang.Cursor) -> Iterator[clang.Cursor]:
    for node in body.walk_preorder():
        if node.kind == K.CALL_EXPR:
            yield node
