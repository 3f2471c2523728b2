"""
JavaScript evaluated inside pages.

The traversal and the ref arena live in the page so that any client process
attached to the browser sees the same current snapshot. The arena is stored on
``window.__devBrowserArena`` and replaced wholesale by every snapshot.
"""

# Helpers shared by the traversal and the re-locate script. Both must compute
# roles, names and fingerprints identically. Expects ``maxText`` in scope.
_HELPERS = r"""
  const SKIP_TAGS = new Set(['script', 'style', 'noscript', 'template', 'head', 'meta', 'link', 'title', 'base', 'br', 'wbr']);
  const INTERACTIVE_TAGS = new Set(['button', 'select', 'textarea', 'summary', 'option']);
  const INTERACTIVE_ROLES = new Set([
    'button', 'link', 'checkbox', 'radio', 'menuitem', 'menuitemcheckbox', 'menuitemradio',
    'tab', 'switch', 'option', 'textbox', 'searchbox', 'combobox', 'slider', 'spinbutton',
    'listbox', 'treeitem', 'gridcell',
  ]);
  const NAME_FROM_CONTENT = new Set([
    'button', 'link', 'heading', 'tab', 'menuitem', 'menuitemcheckbox', 'menuitemradio',
    'option', 'treeitem', 'cell', 'columnheader', 'rowheader', 'switch', 'checkbox', 'radio',
  ]);
  const PRESENTATIONAL_ROLES = new Set(['presentation', 'none']);
  const INPUT_ROLES = {
    button: 'button', submit: 'button', reset: 'button', image: 'button', file: 'button',
    checkbox: 'checkbox', radio: 'radio', range: 'slider', number: 'spinbutton',
    search: 'searchbox',
  };
  const IMPLICIT_ROLES = {
    h1: 'heading', h2: 'heading', h3: 'heading', h4: 'heading', h5: 'heading', h6: 'heading',
    img: 'img', ul: 'list', ol: 'list', li: 'listitem', nav: 'navigation', main: 'main',
    header: 'banner', footer: 'contentinfo', aside: 'complementary', form: 'form',
    table: 'table', tr: 'row', td: 'cell', th: 'columnheader', p: 'paragraph',
    dialog: 'dialog', summary: 'button', button: 'button', textarea: 'textbox',
    option: 'option', progress: 'progressbar', article: 'article', section: 'region',
  };

  const collapse = (s) => (s || '').replace(/\s+/g, ' ').trim();
  const clip = (s) => {
    const t = collapse(s);
    return t.length > maxText ? t.slice(0, maxText) + '...' : t;
  };

  const nthOfType = (el) => {
    let n = 1;
    for (let s = el.previousElementSibling; s; s = s.previousElementSibling) {
      if (s.localName === el.localName) n += 1;
    }
    return n;
  };

  const ownText = (el) => {
    let t = '';
    for (const n of el.childNodes) {
      if (n.nodeType === Node.TEXT_NODE) t += ' ' + n.textContent;
    }
    return collapse(t);
  };

  const roleOf = (el) => {
    const explicit = collapse(el.getAttribute('role')).split(' ')[0];
    if (explicit) return explicit;
    const tag = el.localName;
    if (tag === 'a' || tag === 'area') return el.hasAttribute('href') ? 'link' : 'generic';
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      return INPUT_ROLES[type] || 'textbox';
    }
    if (tag === 'select') return (el.multiple || el.size > 1) ? 'listbox' : 'combobox';
    return IMPLICIT_ROLES[tag] || 'generic';
  };

  const labelText = (el) => {
    const doc = el.ownerDocument;
    const labelledBy = collapse(el.getAttribute('aria-labelledby'));
    if (labelledBy) {
      const parts = labelledBy.split(' ')
        .map((id) => doc.getElementById(id))
        .filter(Boolean)
        .map((n) => n.textContent);
      const t = collapse(parts.join(' '));
      if (t) return t;
    }
    if (el.labels && el.labels.length) {
      const t = collapse(Array.from(el.labels).map((l) => l.textContent).join(' '));
      if (t) return t;
    }
    return '';
  };

  const accessibleName = (el, role) => {
    const aria = collapse(el.getAttribute('aria-label'));
    if (aria) return aria;
    const label = labelText(el);
    if (label) return label;
    const tag = el.localName;
    if (tag === 'img' || tag === 'area') return collapse(el.getAttribute('alt'));
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      if (type === 'button' || type === 'submit' || type === 'reset') return collapse(el.value) || type;
      if (type === 'image') return collapse(el.getAttribute('alt'));
      return collapse(el.getAttribute('placeholder')) || collapse(el.getAttribute('title'));
    }
    if (tag === 'textarea' || tag === 'select') {
      return collapse(el.getAttribute('placeholder')) || collapse(el.getAttribute('title'));
    }
    if (NAME_FROM_CONTENT.has(role)) {
      return collapse(el.innerText !== undefined ? el.innerText : el.textContent);
    }
    return collapse(el.getAttribute('title'));
  };

  const fingerprintOf = (el) => {
    const role = roleOf(el);
    return clip(accessibleName(el, role) || ownText(el));
  };

  const followPath = (root, path) => {
    let candidates = root.nodeType === Node.DOCUMENT_NODE ? [root.documentElement] : Array.from(root.children);
    let node = null;
    for (const [tag, nth] of path) {
      node = null;
      let count = 0;
      for (const c of candidates) {
        if (c && c.localName === tag) {
          count += 1;
          if (count === nth) {
            node = c;
            break;
          }
        }
      }
      if (!node) return null;
      candidates = Array.from(node.children);
    }
    return node;
  };
"""

SNAPSHOT_SCRIPT = (
    "({ maxText, snapshotId, minSequence }) => {\n"
    + _HELPERS
    + r"""
  const STABLE_ATTRS = ['id', 'data-testid', 'data-test', 'data-qa', 'name', 'aria-label'];
  const DISPLAY_ATTRS = ['id', 'name', 'type', 'href', 'placeholder', 'aria-label', 'role', 'title', 'alt'];

  const records = [];
  const elements = new Map();
  const locators = {};
  let counter = 0;

  const isVisible = (el, style) => {
    if (style.visibility === 'hidden' || style.visibility === 'collapse') return false;
    const rect = el.getBoundingClientRect();
    return rect.width > 0 && rect.height > 0;
  };

  const isInteractive = (el, role) => {
    const tag = el.localName;
    if (tag === 'a' || tag === 'area') return el.hasAttribute('href') || el.hasAttribute('onclick');
    if (tag === 'input') return (el.getAttribute('type') || '').toLowerCase() !== 'hidden';
    if (INTERACTIVE_TAGS.has(tag) || INTERACTIVE_ROLES.has(role)) return true;
    if (el.hasAttribute('onclick')) return true;
    if (el.isContentEditable && !(el.parentElement && el.parentElement.isContentEditable)) return true;
    const tabindex = el.getAttribute('tabindex');
    return tabindex !== null && Number(tabindex) >= 0;
  };

  const scrollState = (el, style) => {
    const scrollY = (style.overflowY === 'auto' || style.overflowY === 'scroll') && el.scrollHeight > el.clientHeight;
    const scrollX = (style.overflowX === 'auto' || style.overflowX === 'scroll') && el.scrollWidth > el.clientWidth;
    if (!scrollY && !scrollX) return null;
    return {
      top: Math.round(el.scrollTop),
      left: Math.round(el.scrollLeft),
      height: el.scrollHeight,
      width: el.scrollWidth,
    };
  };

  const valueOf = (el) => {
    const tag = el.localName;
    if (tag === 'select') {
      return Array.from(el.selectedOptions || []).map((o) => o.textContent).join(', ');
    }
    if (tag === 'textarea') return el.value;
    if (tag === 'input') {
      const type = (el.getAttribute('type') || 'text').toLowerCase();
      if (['button', 'submit', 'reset', 'image', 'checkbox', 'radio', 'file', 'hidden'].includes(type)) return '';
      if (type === 'password') return el.value ? '*'.repeat(Math.min(el.value.length, 8)) : '';
      return el.value;
    }
    return '';
  };

  const attrsOf = (el, role) => {
    const attrs = {};
    for (const name of DISPLAY_ATTRS) {
      const v = el.getAttribute(name);
      if (v) attrs[name] = clip(v);
    }
    if ((el.localName === 'input' && (el.type === 'checkbox' || el.type === 'radio') && el.checked)
        || el.getAttribute('aria-checked') === 'true') attrs.checked = 'true';
    if (el.disabled || el.getAttribute('aria-disabled') === 'true') attrs.disabled = 'true';
    const expanded = el.getAttribute('aria-expanded');
    if (expanded) attrs.expanded = expanded;
    if (el.getAttribute('aria-selected') === 'true') attrs.selected = 'true';
    if (role === 'heading') {
      const m = /^h([1-6])$/.exec(el.localName);
      attrs.level = m ? m[1] : (el.getAttribute('aria-level') || '2');
    }
    return attrs;
  };

  const stableAttribute = (el) => {
    for (const name of STABLE_ATTRS) {
      const v = el.getAttribute(name);
      if (v) return [name, v];
    }
    return null;
  };

  const walkScope = (root, scopes, depth, nameCovered) => {
    const start = root.nodeType === Node.DOCUMENT_NODE ? [root.documentElement] : Array.from(root.children);
    for (const child of start) {
      if (child) visit(child, scopes, [], depth, nameCovered);
    }
  };

  const visit = (el, scopes, parentPath, depth, nameCovered) => {
    const tag = el.localName;
    if (SKIP_TAGS.has(tag)) return;
    if (el.getAttribute('aria-hidden') === 'true') return;
    const view = el.ownerDocument.defaultView;
    const style = view ? view.getComputedStyle(el) : null;
    if (style && style.display === 'none') return;

    const path = parentPath.concat([[tag, nthOfType(el)]]);
    const role = roleOf(el);
    let childDepth = depth;
    let childNameCovered = nameCovered;

    if (style && !PRESENTATIONAL_ROLES.has(role) && isVisible(el, style)) {
      const interactive = isInteractive(el, role);
      const scroll = scrollState(el, style);
      const text = ownText(el);
      const name = accessibleName(el, role);
      const named = NAME_FROM_CONTENT.has(role) && !!name;
      const include = interactive || !!scroll || named
        || (role === 'img' && !!name) || (!nameCovered && !!text);

      if (include) {
        counter += 1;
        const ref = 'e' + counter;
        records.push({
          kind: 'element',
          ref,
          depth,
          tag,
          role,
          name: clip(name),
          text: named ? '' : clip(text),
          value: clip(valueOf(el)),
          attrs: attrsOf(el, role),
          scroll,
        });
        elements.set(ref, el);
        locators[ref] = {
          scopes,
          path,
          tag,
          stable: stableAttribute(el),
          fingerprint: fingerprintOf(el),
        };
        childDepth = depth + 1;
        if (named) childNameCovered = true;
      }
    }

    if (el.shadowRoot) {
      records.push({ kind: 'shadow-root', depth: childDepth });
      walkScope(el.shadowRoot, scopes.concat([{ kind: 'shadow', path }]), childDepth + 1, childNameCovered);
      records.push({ kind: 'shadow-exit', depth: childDepth });
    }

    if (tag === 'iframe' || tag === 'frame') {
      let doc = null;
      try {
        doc = el.contentDocument;
      } catch (e) {
        doc = null;
      }
      const accessible = !!(doc && doc.documentElement);
      records.push({ kind: 'frame-enter', depth: childDepth, src: clip(el.getAttribute('src') || ''), accessible });
      if (accessible) walkScope(doc, scopes.concat([{ kind: 'frame', path }]), childDepth + 1, false);
      records.push({ kind: 'frame-exit', depth: childDepth });
      return;
    }

    for (const child of el.children) visit(child, scopes, path, childDepth, childNameCovered);
  };

  walkScope(document, [], 0, false);

  const previous = window.__devBrowserArena;
  const sequence = Math.max(minSequence, previous && previous.sequence ? previous.sequence + 1 : 1);
  window.__devBrowserArena = { snapshotId, sequence, elements, locators };

  return { records, locators, sequence, url: location.href, title: document.title };
}
"""
)

LOAD_ARENA_SCRIPT = r"""() => {
  const arena = window.__devBrowserArena;
  if (!arena) return null;
  return { snapshotId: arena.snapshotId, sequence: arena.sequence, locators: arena.locators };
}
"""

# Returns {status: 'ok', element} | {status: 'stale'} | {status: 'detached'}.
RESOLVE_REF_SCRIPT = (
    "({ snapshotId, ref, locator, maxText }) => {\n"
    + _HELPERS
    + r"""
  const relocate = () => {
    let root = document;
    for (const scope of locator.scopes) {
      const host = followPath(root, scope.path);
      if (!host) return null;
      if (scope.kind === 'shadow') {
        root = host.shadowRoot;
      } else {
        try {
          root = host.contentDocument;
        } catch (e) {
          root = null;
        }
      }
      if (!root) return null;
    }
    const el = followPath(root, locator.path);
    if (!el || el.localName !== locator.tag) return null;
    if (locator.stable && el.getAttribute(locator.stable[0]) !== locator.stable[1]) return null;
    if (fingerprintOf(el) !== locator.fingerprint) return null;
    return el;
  };

  const arena = window.__devBrowserArena;
  if (arena) {
    if (arena.snapshotId !== snapshotId) return { status: 'stale' };
    const el = arena.elements.get(ref);
    if (!el) return { status: 'stale' };
    return el.isConnected ? { status: 'ok', element: el } : { status: 'detached' };
  }

  // The document was replaced since the snapshot: re-locate and verify.
  const el = relocate();
  return el ? { status: 'ok', element: el } : { status: 'detached' };
}
"""
)

# Builds a selector for an element, one segment per document/shadow scope.
# Every segment is checked to match exactly the target inside its scope.
SELECTOR_SCRIPT = r"""(target) => {
  const STABLE_ATTRS = ['id', 'data-testid', 'data-test', 'data-qa', 'name', 'aria-label'];
  const COMBO_ATTRS = ['type', 'role', 'placeholder', 'href', 'title', 'alt', 'for', 'value'];

  const quote = (v) => v.replace(/\\/g, '\\\\').replace(/"/g, '\\"').replace(/\n/g, '\\a ');

  const nthOfType = (el) => {
    let n = 1;
    for (let s = el.previousElementSibling; s; s = s.previousElementSibling) {
      if (s.localName === el.localName) n += 1;
    }
    return n;
  };

  // Counts matches the way Playwright's CSS engine does: open shadow roots
  // under the scope are searched too. A shadow root's segment is queried
  // from its host, so the host's light DOM counts as well.
  const deepMatches = (root, sel) => {
    const found = [];
    const visit = (scope) => {
      for (const m of scope.querySelectorAll(sel)) found.push(m);
      for (const n of scope.querySelectorAll('*')) {
        if (n.shadowRoot) visit(n.shadowRoot);
      }
    };
    if (root.nodeType === Node.DOCUMENT_FRAGMENT_NODE && root.host) {
      visit(root.host);
      visit(root);
    } else {
      visit(root);
    }
    return found;
  };

  const isUnique = (root, sel, el) => {
    let matches;
    try {
      matches = deepMatches(root, sel);
    } catch (e) {
      return false;
    }
    return matches.length === 1 && matches[0] === el;
  };

  const stableSelector = (el, root) => {
    for (const name of STABLE_ATTRS) {
      const value = el.getAttribute(name);
      if (!value) continue;
      const sel = name === 'id' ? '#' + CSS.escape(value) : `${el.localName}[${name}="${quote(value)}"]`;
      if (isUnique(root, sel, el)) return sel;
    }
    return null;
  };

  const comboSelector = (el, root) => {
    const tag = el.localName;
    if (isUnique(root, tag, el)) return tag;
    const tokens = [];
    for (const name of COMBO_ATTRS) {
      const value = el.getAttribute(name);
      if (value && value.length <= 200) tokens.push(`[${name}="${quote(value)}"]`);
    }
    for (const cls of el.classList) {
      if (/^[A-Za-z_-][\w-]*$/.test(cls)) tokens.push('.' + CSS.escape(cls));
    }
    for (const t of tokens) {
      if (isUnique(root, tag + t, el)) return tag + t;
    }
    for (let i = 0; i < tokens.length; i++) {
      for (let j = i + 1; j < tokens.length; j++) {
        const sel = tag + tokens[i] + tokens[j];
        if (isUnique(root, sel, el)) return sel;
      }
    }
    return null;
  };

  const structuralSelector = (el, root) => {
    const chain = [];
    let node = el;
    while (node && node.nodeType === Node.ELEMENT_NODE) {
      if (node !== el) {
        const anchor = stableSelector(node, root);
        if (anchor) {
          chain.unshift(anchor);
          return chain.join(' > ');
        }
      }
      if (node.parentNode === root) {
        chain.unshift(root.nodeType === Node.DOCUMENT_NODE ? ':root' : `${node.localName}:nth-of-type(${nthOfType(node)})`);
        break;
      }
      chain.unshift(`${node.localName}:nth-of-type(${nthOfType(node)})`);
      node = node.parentElement;
    }
    return chain.join(' > ');
  };

  const segmentFor = (el, root) => {
    for (const build of [stableSelector, comboSelector, structuralSelector]) {
      const sel = build(el, root);
      if (sel && isUnique(root, sel, el)) return sel;
    }
    return null;
  };

  let selector = '';
  let joiner = '';
  let el = target;
  while (el) {
    const root = el.getRootNode();
    const seg = segmentFor(el, root);
    if (!seg) {
      const scope = root.nodeType === Node.DOCUMENT_NODE ? 'document' : 'shadow root';
      return { ok: false, reason: `no unique selector for <${el.localName}> within its ${scope}` };
    }
    selector = seg + joiner + selector;

    if (root.nodeType === Node.DOCUMENT_FRAGMENT_NODE && root.host) {
      el = root.host;
      joiner = ' >> ';
    } else {
      let frame = null;
      try {
        frame = root.defaultView ? root.defaultView.frameElement : null;
      } catch (e) {
        frame = null;
      }
      el = frame;
      joiner = ' >> internal:control=enter-frame >> ';
    }
  }
  return { ok: true, selector };
}
"""

# Runs caller-supplied JavaScript with ``refs`` bound to the current arena's
# elements. The user script is spliced in as the body of an async function.
RUN_SCRIPT_TEMPLATE = r"""async ({ snapshotId }) => {
  const arena = window.__devBrowserArena;
  const refs = {};
  if (arena && arena.snapshotId === snapshotId) {
    for (const [ref, el] of arena.elements) refs[ref] = el;
  }
  const __userScript = async (refs) => {
%s
  };
  return await __userScript(refs);
}
"""

# Tag an element so a locator match can be compared with it from any frame.
MARK_ELEMENT_SCRIPT = "(el, mark) => { el.__devBrowserMark = mark; }"
HAS_MARK_SCRIPT = "(el, mark) => el.__devBrowserMark === mark"
CLEAR_MARK_SCRIPT = "(el) => { delete el.__devBrowserMark; }"
