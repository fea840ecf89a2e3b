"""Seed reference documents for development/testing."""

from game_forge import storage

DEMO_DOCUMENTS = [
    {
        "name": "SessionSDK integration pattern",
        "text": """# SessionSDK integration pattern

Every game page loads the SDK and creates one instance:

```js
const sdk = new SessionSDK({ gameId: 'tilt-maze', gameType: 'solo' });

sdk.on('connected', () => {
    sdk.createSession();
});

sdk.on('session-created', (event) => {
    const session = event.detail || event;
    showSessionCode(session.sessionCode);
});

sdk.on('sensor-connected', (event) => {
    const data = event.detail || event;
    hideWaitingScreen(data.sensorId);
});
```

Create the session only after 'connected'. Always unwrap events with
`event.detail || event`; the SDK dispatches CustomEvents.
""",
    },
    {
        "name": "Sensor tilt game implementation",
        "text": """# Sensor tilt game implementation

'sensor-data' events carry orientation (alpha, beta, gamma), acceleration
(x, y, z) and rotationRate. Tilt games read beta and gamma:

```js
const SMOOTHING = 0.2;
const DEADZONE = 2;
let tiltX = 0, tiltY = 0;

sdk.on('sensor-data', (event) => {
    const data = event.detail || event;
    const o = data.data.orientation;
    const gx = Math.abs(o.gamma) < DEADZONE ? 0 : o.gamma;
    const gy = Math.abs(o.beta) < DEADZONE ? 0 : o.beta;
    tiltX += (gx - tiltX) * SMOOTHING;   // smooth noisy input
    tiltY += (gy - tiltY) * SMOOTHING;
});
```

Shake games threshold the acceleration magnitude instead.
""",
    },
    {
        "name": "Game loop update render pattern",
        "text": """# Game loop update render pattern

```js
let state = 'ready';   // ready | playing | paused | gameOver
let last = performance.now();

function loop(now) {
    const dt = Math.min((now - last) / 1000, 0.05);
    last = now;
    if (state === 'playing') update(dt);
    render();
    requestAnimationFrame(loop);
}
requestAnimationFrame(loop);
```

update() applies velocity with friction, resolves collisions against walls
and bounds, and adds to the score (`score += 10`). render() clears the
canvas and draws from state only.
""",
    },
    {
        "name": "Complete game template HTML structure",
        "text": """# Complete game template HTML structure

```html
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="UTF-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>Game</title>
  <style>
    :root { --bg: #0f172a; --accent: #38bdf8; }
    body { margin: 0; background: var(--bg); }
    canvas { display: block; width: 100vw; height: 100vh; }
    @media (max-width: 600px) { .hud { font-size: 14px; } }
  </style>
</head>
<body>
  <canvas id="game"></canvas>
  <div class="hud">Score: <span id="score">0</span></div>
  <button id="restart" onclick="restart()">Restart</button>
  <script src="/js/SessionSDK.js"></script>
  <script>
    const canvas = document.getElementById('game');
    const ctx = canvas.getContext('2d');
  </script>
</body>
</html>
```
""",
    },
]


def create_demo_documents() -> int:
    """Write the demo reference documents, replacing same-named ones."""
    for doc in DEMO_DOCUMENTS:
        storage.save_document(doc["name"], doc["text"])
    return len(DEMO_DOCUMENTS)
