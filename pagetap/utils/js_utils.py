"""
pagetap/utils/js_utils.py

JavaScript injection utilities.

All JavaScript code that gets injected into the page should be generated
through functions in this module for consistency and maintainability.
"""

import json

from pagetap.config import Config

_NETWORK_INSTRUMENTATION_TEMPLATE = r"""
(function() {
  'use strict';

  const BINDING = __BINDING_NAME__;
  const BODY_MAX_CHARS = __BODY_MAX_CHARS__;
  const INSTALLED_FLAG = '__pagetapNetworkInstrumentationInstalled';

  if (window[INSTALLED_FLAG]) {
    return;
  }
  window[INSTALLED_FLAG] = true;

  // Correlation keys: unique per logical flow for the lifetime of this page load
  let keyCounter = 0;
  function mintKey() {
    if (window.crypto && typeof window.crypto.randomUUID === 'function') {
      return window.crypto.randomUUID();
    }
    keyCounter += 1;
    return Date.now().toString(36) + '-' + keyCounter.toString(36) + '-' + Math.random().toString(36).slice(2, 10);
  }

  // Exactly one binding call per logical event
  function post(family, phase, correlationKey, fields) {
    const binding = window[BINDING];
    if (typeof binding !== 'function') {
      return;
    }
    const envelope = {
      family: family,
      phase: phase,
      correlationKey: correlationKey,
      timestampMillis: Date.now()
    };
    let payload;
    try {
      payload = JSON.stringify(Object.assign({}, fields || {}, envelope));
    } catch (e) {
      payload = JSON.stringify(envelope);
    }
    try {
      binding(payload);
    } catch (e) {
      console.warn('pagetap: failed to post network notification', e);
    }
  }

  function truncate(value) {
    if (value === undefined || value === null) {
      return null;
    }
    let text;
    if (typeof value === 'string') {
      text = value;
    } else if (value instanceof ArrayBuffer || (ArrayBuffer.isView && ArrayBuffer.isView(value))) {
      text = '[binary ' + value.byteLength + ' bytes]';
    } else if (typeof Blob !== 'undefined' && value instanceof Blob) {
      text = '[blob ' + value.size + ' bytes]';
    } else if (typeof FormData !== 'undefined' && value instanceof FormData) {
      text = '[form data]';
    } else {
      try {
        text = String(value);
      } catch (e) {
        text = '[unserializable]';
      }
    }
    return text.length > BODY_MAX_CHARS ? text.slice(0, BODY_MAX_CHARS) : text;
  }

  function byteSize(value) {
    if (value === undefined || value === null) {
      return 0;
    }
    if (typeof value === 'string') {
      return typeof TextEncoder !== 'undefined' ? new TextEncoder().encode(value).length : value.length;
    }
    if (value instanceof ArrayBuffer || (ArrayBuffer.isView && ArrayBuffer.isView(value))) {
      return value.byteLength;
    }
    if (typeof Blob !== 'undefined' && value instanceof Blob) {
      return value.size;
    }
    return 0;
  }

  function headersToObject(headers) {
    const result = {};
    if (!headers) {
      return result;
    }
    try {
      if (typeof Headers !== 'undefined' && headers instanceof Headers) {
        headers.forEach(function(value, name) { result[name] = value; });
      } else if (Array.isArray(headers)) {
        headers.forEach(function(pair) {
          if (pair && pair.length === 2) {
            result[String(pair[0])] = String(pair[1]);
          }
        });
      } else if (typeof headers === 'object') {
        Object.keys(headers).forEach(function(name) { result[name] = String(headers[name]); });
      }
    } catch (e) {
      // headers stay partial
    }
    return result;
  }

  // 1. fetch
  if (typeof window.fetch === 'function') {
    const originalFetch = window.fetch;
    window.fetch = function(input, init) {
      const key = mintKey();
      const startTime = performance.now();
      let url = input;
      let method = 'GET';
      let headers = {};
      let body = null;
      try {
        if (typeof Request !== 'undefined' && input instanceof Request) {
          url = input.url;
          method = input.method;
          headers = headersToObject(input.headers);
        } else if (input && typeof input === 'object' && 'href' in input) {
          url = input.href;
        }
        if (init) {
          if (init.method) {
            method = init.method;
          }
          if (init.headers) {
            headers = headersToObject(init.headers);
          }
          if (init.body !== undefined && init.body !== null) {
            body = truncate(init.body);
          }
        }
      } catch (e) {
        // request details stay partial
      }
      post('fetch', 'request', key, {
        url: String(url),
        method: String(method).toUpperCase(),
        headers: headers,
        body: body
      });
      return originalFetch.apply(this, arguments).then(function(response) {
        post('fetch', 'response', key, {
          status: response.status,
          statusText: response.statusText,
          headers: headersToObject(response.headers),
          duration: performance.now() - startTime
        });
        return response;
      }, function(error) {
        post('fetch', 'error', key, {
          error: error && error.message ? error.message : String(error),
          duration: performance.now() - startTime
        });
        throw error;
      });
    };
  }

  // 2. XMLHttpRequest (one flow per open() call)
  if (typeof XMLHttpRequest !== 'undefined') {
    const xhrProto = XMLHttpRequest.prototype;
    const originalOpen = xhrProto.open;
    const originalSend = xhrProto.send;
    const STATE = '__pagetapXhrState';
    const LISTENING = '__pagetapXhrListening';

    function listen(xhr) {
      xhr.addEventListener('loadstart', function() {
        const s = xhr[STATE];
        if (s) {
          post('xhr', 'loadstart', s.key, {});
        }
      });
      xhr.addEventListener('load', function() {
        const s = xhr[STATE];
        if (!s) {
          return;
        }
        let text = null;
        try {
          if (xhr.responseType === '' || xhr.responseType === 'text') {
            text = truncate(xhr.responseText);
          }
        } catch (e) {
          text = null;
        }
        post('xhr', 'load', s.key, {
          status: xhr.status,
          statusText: xhr.statusText,
          responseHeaders: xhr.getAllResponseHeaders(),
          responseText: text,
          duration: performance.now() - s.startTime
        });
      });
      ['error', 'abort', 'timeout'].forEach(function(type) {
        xhr.addEventListener(type, function() {
          const s = xhr[STATE];
          if (s) {
            post('xhr', 'error', s.key, {error: type, duration: performance.now() - s.startTime});
          }
        });
      });
    }

    xhrProto.open = function(method, url) {
      const state = {key: mintKey(), startTime: performance.now()};
      this[STATE] = state;
      if (!this[LISTENING]) {
        this[LISTENING] = true;
        listen(this);
      }
      post('xhr', 'open', state.key, {
        url: String(url),
        method: String(method).toUpperCase(),
        async: arguments.length < 3 || arguments[2] !== false
      });
      return originalOpen.apply(this, arguments);
    };

    xhrProto.send = function(data) {
      const s = this[STATE];
      if (s) {
        post('xhr', 'send', s.key, {data: truncate(data)});
      }
      return originalSend.apply(this, arguments);
    };
  }

  // 3. WebSocket
  if (typeof window.WebSocket === 'function') {
    const OriginalWebSocket = window.WebSocket;
    const PatchedWebSocket = function(url, protocols) {
      const ws = protocols === undefined ? new OriginalWebSocket(url) : new OriginalWebSocket(url, protocols);
      const key = mintKey();
      post('websocket', 'connection', key, {
        url: String(ws.url || url),
        protocols: protocols === undefined ? null : protocols
      });
      ws.addEventListener('open', function() {
        post('websocket', 'open', key, {});
      });
      ws.addEventListener('message', function(event) {
        post('websocket', 'message', key, {
          data: truncate(event.data),
          dataType: typeof event.data,
          dataSize: byteSize(event.data)
        });
      });
      ws.addEventListener('close', function(event) {
        post('websocket', 'close', key, {code: event.code, reason: event.reason, wasClean: event.wasClean});
      });
      ws.addEventListener('error', function() {
        post('websocket', 'error', key, {});
      });
      const originalWsSend = ws.send;
      ws.send = function(data) {
        post('websocket', 'send', key, {
          data: truncate(data),
          dataType: typeof data,
          dataSize: byteSize(data)
        });
        return originalWsSend.apply(this, arguments);
      };
      return ws;
    };
    PatchedWebSocket.prototype = OriginalWebSocket.prototype;
    ['CONNECTING', 'OPEN', 'CLOSING', 'CLOSED'].forEach(function(name) {
      PatchedWebSocket[name] = OriginalWebSocket[name];
    });
    window.WebSocket = PatchedWebSocket;
  }

  // 4. EventSource
  if (typeof window.EventSource === 'function') {
    const OriginalEventSource = window.EventSource;
    const PatchedEventSource = function(url, init) {
      const es = new OriginalEventSource(url, init);
      const key = mintKey();
      post('eventsource', 'connection', key, {
        url: String(es.url || url),
        withCredentials: !!(init && init.withCredentials)
      });
      es.addEventListener('open', function() {
        post('eventsource', 'open', key, {});
      });
      es.addEventListener('message', function(event) {
        post('eventsource', 'message', key, {
          data: truncate(event.data),
          dataSize: byteSize(event.data),
          lastEventId: event.lastEventId,
          origin: event.origin
        });
      });
      es.addEventListener('error', function() {
        post('eventsource', 'error', key, {readyState: es.readyState});
      });
      return es;
    };
    PatchedEventSource.prototype = OriginalEventSource.prototype;
    ['CONNECTING', 'OPEN', 'CLOSED'].forEach(function(name) {
      PatchedEventSource[name] = OriginalEventSource[name];
    });
    window.EventSource = PatchedEventSource;
  }

  // 5. RTCPeerConnection
  const OriginalPeerConnection = window.RTCPeerConnection || window.webkitRTCPeerConnection;
  if (typeof OriginalPeerConnection === 'function') {
    const PatchedPeerConnection = function(configuration, constraints) {
      const pc = new OriginalPeerConnection(configuration, constraints);
      const key = mintKey();
      post('webrtc', 'connection', key, {configuration: configuration || null});
      pc.addEventListener('connectionstatechange', function() {
        post('webrtc', 'connectionStateChange', key, {connectionState: pc.connectionState});
      });
      pc.addEventListener('iceconnectionstatechange', function() {
        post('webrtc', 'iceConnectionStateChange', key, {iceConnectionState: pc.iceConnectionState});
      });
      pc.addEventListener('datachannel', function(event) {
        post('webrtc', 'dataChannelCreated', key, {
          channelLabel: event.channel.label,
          channelId: event.channel.id,
          channelOrigin: 'remote'
        });
      });
      const originalCreateDataChannel = pc.createDataChannel;
      pc.createDataChannel = function(label) {
        const channel = originalCreateDataChannel.apply(this, arguments);
        post('webrtc', 'dataChannelCreated', key, {
          channelLabel: String(label),
          channelId: channel ? channel.id : null,
          channelOrigin: 'local'
        });
        return channel;
      };
      return pc;
    };
    PatchedPeerConnection.prototype = OriginalPeerConnection.prototype;
    window.RTCPeerConnection = PatchedPeerConnection;
    if (window.webkitRTCPeerConnection) {
      window.webkitRTCPeerConnection = PatchedPeerConnection;
    }
  }

  // 6. Passive resources (fetch/XHR entries are already reported by their own hooks)
  if (typeof window.PerformanceObserver === 'function') {
    try {
      const observer = new PerformanceObserver(function(list) {
        list.getEntries().forEach(function(entry) {
          if (entry.initiatorType === 'fetch' || entry.initiatorType === 'xmlhttprequest') {
            return;
          }
          post('resource', 'load', mintKey(), {
            url: entry.name,
            initiatorType: entry.initiatorType,
            duration: entry.duration,
            transferSize: entry.transferSize,
            encodedBodySize: entry.encodedBodySize,
            decodedBodySize: entry.decodedBodySize
          });
        });
      });
      try {
        observer.observe({type: 'resource', buffered: true});
      } catch (e) {
        observer.observe({entryTypes: ['resource']});
      }
    } catch (e) {
      console.warn('pagetap: PerformanceObserver not supported', e);
    }
  }

  post('debug', 'initialized', null, {message: 'Network instrumentation installed'});
})();
"""


def generate_network_instrumentation_js(
    binding_name: str | None = None,
    body_max_chars: int | None = None,
) -> str:
    """Generate the network instrumentation script injected at document start.

    The script wraps fetch, XMLHttpRequest, WebSocket, EventSource and RTCPeerConnection,
    observes passive resource loads, and posts one JSON-encoded notification per event
    through the runtime binding.

    Args:
        binding_name: Name of the runtime binding the script posts to (defaults to Config.BINDING_NAME).
        body_max_chars: Page-side truncation limit for bodies and message payloads
            (defaults to Config.BODY_MAX_CHARS).

    Returns:
        JavaScript source as a string.
    """
    binding_name = binding_name or Config.BINDING_NAME
    body_max_chars = body_max_chars if body_max_chars is not None else Config.BODY_MAX_CHARS
    if body_max_chars < 0:
        raise ValueError(f"body_max_chars must be non-negative, got {body_max_chars}")

    return (
        _NETWORK_INSTRUMENTATION_TEMPLATE
        .replace("__BINDING_NAME__", json.dumps(binding_name))
        .replace("__BODY_MAX_CHARS__", str(int(body_max_chars)))
    )
